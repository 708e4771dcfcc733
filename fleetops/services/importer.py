"""Bulk CSV loading for personnel, axes, stops, vehicles and daily assignments.

Each file is loaded in a single transaction. Rows are inserted inside their
own savepoint so a bad row is reported in ``errors`` without discarding the
rows around it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from io import BytesIO
from typing import Any, Callable, Mapping

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fleetops.errors import AppError, ValidationError
from fleetops.models import Assignment, Axis, Personnel, Planning, Stop, Vehicle
from fleetops.repositories import coerce_value

logger = logging.getLogger("fleetops.importer")

PERSONNEL_ALIASES = {
    "nom": "last_name",
    "prenom": "first_name",
    "adresse": "address",
    "planifier": "planned",
    "sexe": "gender",
    "date_naissance": "birth_date",
    "statut": "status",
    "fonction": "job_title",
    "campagne": "campaign",
}
STOP_ALIASES = {"nom_arret": "name", "id_axe": "axis_id", "ordre": "position"}
VEHICLE_ALIASES = {"nom_car": "name", "capacite": "capacity", "disponible": "available"}
ASSIGNMENT_ALIASES = {
    "matricule wd": "matricule",
    "agentfirstname": "first_name",
    "adresse": "address",
    "affectationlib": "job_title",
    "startdate": "assignment_date",
    "#remisage endtime": "departure_time",
    "zone aj dans lsite sg": "axis",
}
DAY_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%Y-%m-%d %H:%M:%S", "%d/%m/%Y %H:%M")
DEFAULT_AXIS = "DEFAULT_AXIS"
DEFAULT_ADDRESS = "Address not specified"
DEFAULT_JOB_TITLE = "Job title not specified"
DEFAULT_VEHICLE_CAPACITY = 20
DEFAULT_DEPOT = (-18.8792, 47.5079)


def read_frame(raw: bytes, header: bool = True) -> pd.DataFrame:
    if not raw:
        raise ValidationError("The CSV file is empty or invalid.")
    try:
        frame = pd.read_csv(
            BytesIO(raw),
            dtype=str,
            keep_default_na=False,
            header=0 if header else None,
            skipinitialspace=True,
        )
    except ValueError as exc:
        raise ValidationError("The CSV file is empty or invalid.") from exc
    if header:
        frame.columns = [str(column).strip().lower() for column in frame.columns]
    return frame


def _clean(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _row_text(row: Mapping[str, Any]) -> str:
    return ",".join(_clean(value) for value in row.values())


def _parse_day(text: str) -> date:
    for pattern in DAY_FORMATS:
        try:
            return datetime.strptime(text, pattern).date()
        except ValueError:
            continue
    raise ValidationError(f"Invalid date '{text}'.")


def _parse_time(text: str) -> time:
    try:
        return time.fromisoformat(text.lower().replace("h", ":"))
    except ValueError as exc:
        raise ValidationError(f"Invalid departure time '{text}'.") from exc


class CsvImporter:
    def __init__(self, session_factory: sessionmaker, default_departure: str = "Head office") -> None:
        self.session_factory = session_factory
        self.default_departure = default_departure

    def import_personnels(self, raw: bytes) -> dict[str, Any]:
        frame = read_frame(raw).rename(columns=PERSONNEL_ALIASES)

        def build(row: Mapping[str, Any]) -> Personnel | None:
            if not _clean(row.get("matricule")) or not _clean(row.get("last_name")) or not _clean(row.get("first_name")):
                return None
            record = {
                name: row.get(name)
                for name in (
                    "address",
                    "latitude",
                    "longitude",
                    "gender",
                    "birth_date",
                    "status",
                    "job_title",
                    "campaign",
                )
            }
            record["matricule"] = _clean(row.get("matricule"))
            record["last_name"] = _clean(row.get("last_name"))
            record["first_name"] = _clean(row.get("first_name"))
            record["planned"] = row.get("planned") if _clean(row.get("planned")) else "1"
            return Personnel(**self._coerce(Personnel, record))

        return self._load("personnels", frame.to_dict("records"), build)

    def import_axes(self, raw: bytes) -> dict[str, Any]:
        """Rows are ``[blank, axis, sector, km]``; a blank axis cell repeats the previous axis."""
        frame = read_frame(raw, header=False)
        rows = [list(values) for values in frame.iloc[1:].itertuples(index=False)]
        inserted = 0
        errors: list[str] = []
        current_axis: str | None = None

        session = self.session_factory()
        try:
            for values in rows:
                cells = [_clean(value) for value in values] + [""] * (4 - len(values))
                if not any(cells):
                    continue
                if cells[1]:
                    current_axis = cells[1]
                sector = cells[2]
                if not current_axis or not sector:
                    errors.append(f"Invalid line: {','.join(cells)}")
                    continue
                try:
                    distance = float(cells[3].replace(",", ".")) if cells[3] else None
                except ValueError:
                    distance = None
                axis = Axis(
                    name=current_axis,
                    departure=self.default_departure,
                    arrival=sector,
                    distance_km=distance,
                )
                if self._insert(session, axis, errors, f"{current_axis} - {sector}"):
                    inserted += 1
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("csv import table=axes inserted=%s errors=%s", inserted, len(errors))
        return {"inserted": inserted, "errors": errors}

    def import_stops(self, raw: bytes) -> dict[str, Any]:
        frame = read_frame(raw).rename(columns=STOP_ALIASES)

        def build(row: Mapping[str, Any], session) -> Stop | None:
            if not _clean(row.get("name")) or not _clean(row.get("axis_id")) or not _clean(row.get("position")):
                return None
            record = self._coerce(
                Stop,
                {
                    "name": _clean(row.get("name")),
                    "latitude": row.get("latitude"),
                    "longitude": row.get("longitude"),
                    "axis_id": _clean(row.get("axis_id")),
                    "position": _clean(row.get("position")),
                },
            )
            if session.get(Axis, record["axis_id"]) is None:
                raise ValidationError(f"Axis not found axis_id={record['axis_id']} for stop {record['name']}")
            return Stop(**record)

        return self._load("stops", frame.to_dict("records"), build, needs_session=True)

    def import_vehicles(self, raw: bytes) -> dict[str, Any]:
        frame = read_frame(raw).rename(columns=VEHICLE_ALIASES)

        def build(row: Mapping[str, Any]) -> Vehicle | None:
            if not _clean(row.get("name")) or not _clean(row.get("capacity")):
                return None
            record = self._coerce(
                Vehicle,
                {
                    "name": _clean(row.get("name")),
                    "capacity": _clean(row.get("capacity")),
                    "available": row.get("available") if _clean(row.get("available")) else "1",
                    "depot_lat": row.get("depot_lat"),
                    "depot_lng": row.get("depot_lng"),
                },
            )
            return Vehicle(**record)

        return self._load("vehicles", frame.to_dict("records"), build)

    def import_assignments(self, raw: bytes, now: datetime | None = None) -> dict[str, Any]:
        """Daily assignment export, one row per agent and day.

        Unknown agents, axes and stops are created on the fly. The first
        available vehicle takes the assignment, and a departure time sets the
        agent's planning for that day.
        """
        moment = now or datetime.now(timezone.utc)
        frame = read_frame(raw).rename(columns=ASSIGNMENT_ALIASES)
        inserted = 0
        errors: list[str] = []
        session = self.session_factory()
        try:
            for row in frame.to_dict("records"):
                matricule = _clean(row.get("matricule"))
                day_text = _clean(row.get("assignment_date"))
                if not matricule or not day_text:
                    errors.append(f"Invalid line (matricule or date missing): {_row_text(row)}")
                    continue
                savepoint = session.begin_nested()
                try:
                    self._assign(session, row, matricule, _parse_day(day_text), moment)
                    session.flush()
                except AppError as exc:
                    savepoint.rollback()
                    errors.append(f"Error line (matricule {matricule}): {exc.message}")
                    continue
                except IntegrityError as exc:
                    savepoint.rollback()
                    errors.append(f"Error line (matricule {matricule}): {exc.orig}")
                    continue
                savepoint.commit()
                inserted += 1
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("csv import table=assignments inserted=%s errors=%s", inserted, len(errors))
        return {"inserted": inserted, "errors": errors}

    def _assign(self, session, row: Mapping[str, Any], matricule: str, day: date, moment: datetime) -> None:
        first_name = _clean(row.get("first_name")) or f"Agent_{matricule}"
        address = _clean(row.get("address")) or DEFAULT_ADDRESS
        axis_name = _clean(row.get("axis")) or DEFAULT_AXIS
        departure_text = _clean(row.get("departure_time"))
        departure = _parse_time(departure_text) if departure_text else None

        personnel = session.scalars(select(Personnel).where(Personnel.matricule == matricule)).first()
        if personnel is None:
            personnel = Personnel(
                matricule=matricule,
                last_name=first_name,
                first_name=first_name,
                address=address,
                job_title=_clean(row.get("job_title")) or DEFAULT_JOB_TITLE,
                planned=True,
                status="Active",
                campaign=str(day.year),
            )
            session.add(personnel)

        axis = session.scalars(select(Axis).where(Axis.name == axis_name)).first()
        if axis is None:
            axis = Axis(name=axis_name, departure=self.default_departure, arrival=axis_name)
            session.add(axis)
            session.flush()

        stop = session.scalars(select(Stop).where(Stop.name == address, Stop.axis_id == axis.id)).first()
        if stop is None:
            last = session.execute(select(func.max(Stop.position)).where(Stop.axis_id == axis.id)).scalar()
            stop = Stop(name=address, axis_id=axis.id, position=int(last or 0) + 1)
            session.add(stop)
            session.flush()
        if personnel.stop_id is None:
            personnel.stop_id = stop.id

        vehicle = session.scalars(select(Vehicle).where(Vehicle.available.is_(True)).order_by(Vehicle.id)).first()
        if vehicle is None:
            vehicle = Vehicle(
                name=f"DEFAULT_CAR_{moment:%Y%m%d%H%M%S}",
                capacity=DEFAULT_VEHICLE_CAPACITY,
                available=True,
                depot_lat=DEFAULT_DEPOT[0],
                depot_lng=DEFAULT_DEPOT[1],
            )
            session.add(vehicle)
        session.flush()

        taken = session.scalars(
            select(Assignment.id).where(
                Assignment.vehicle_id == vehicle.id,
                Assignment.personnel_id == personnel.id,
                Assignment.assignment_date == day,
            )
        ).first()
        if taken is not None:
            raise ValidationError(f"Already assigned on {day.isoformat()}.")
        session.add(
            Assignment(
                vehicle_id=vehicle.id,
                stop_id=stop.id,
                personnel_id=personnel.id,
                assignment_date=day,
                assigned_at=moment,
            )
        )

        if departure is not None:
            planning = session.scalars(
                select(Planning).where(Planning.personnel_id == personnel.id, Planning.day == day)
            ).first()
            if planning is None:
                session.add(Planning(personnel_id=personnel.id, day=day, departure_time=departure))
            else:
                planning.departure_time = departure

    def _load(
        self,
        table: str,
        rows: list[dict[str, Any]],
        build: Callable[..., Any],
        needs_session: bool = False,
    ) -> dict[str, Any]:
        inserted = 0
        errors: list[str] = []
        session = self.session_factory()
        try:
            for line, row in enumerate(rows, start=2):
                try:
                    obj = build(row, session) if needs_session else build(row)
                except AppError as exc:
                    errors.append(f"Line {line}: {exc.message}")
                    continue
                if obj is None:
                    errors.append(f"Invalid line: {_row_text(row)}")
                    continue
                if self._insert(session, obj, errors, f"line {line}"):
                    inserted += 1
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("csv import table=%s inserted=%s errors=%s", table, inserted, len(errors))
        return {"inserted": inserted, "errors": errors}

    def _insert(self, session, obj: Any, errors: list[str], label: str) -> bool:
        savepoint = session.begin_nested()
        try:
            session.add(obj)
            session.flush()
        except IntegrityError as exc:
            savepoint.rollback()
            errors.append(f"Error ({label}): {exc.orig}")
            return False
        savepoint.commit()
        return True

    def _coerce(self, model, record: Mapping[str, Any]) -> dict[str, Any]:
        columns = model.__table__.columns
        return {name: coerce_value(columns[name], value) for name, value in record.items()}
