"""Table-level data access shared by the controllers and the auth guard."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Iterable, Mapping

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Time, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from fleetops.errors import ConflictError, ValidationError, unprocessable
from fleetops.models import Assignment, Axis, Personnel, Planning, Stop, Trip, User, Vehicle

AUTO_COLUMNS = ("id", "created_at", "updated_at")


def coerce_value(column, value: Any) -> Any:
    if value is None or value == "":
        return None
    column_type = column.type
    try:
        if isinstance(column_type, Boolean):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(column_type, Integer):
            return int(value)
        if isinstance(column_type, Float):
            if isinstance(value, str):
                value = value.replace(",", ".")
            return float(value)
        if isinstance(column_type, DateTime):
            return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
        if isinstance(column_type, Date):
            return value if isinstance(value, date) else date.fromisoformat(str(value))
        if isinstance(column_type, Time):
            return value if isinstance(value, time) else time.fromisoformat(str(value))
    except (TypeError, ValueError) as exc:
        raise unprocessable(f"Invalid value for field '{column.name}'.") from exc
    return value


class Repository:
    """CRUD over one mapped table; rows are returned as plain dicts."""

    model: type = None
    default_order: tuple[str, ...] = ("id",)
    hidden_fields: tuple[str, ...] = ()

    def __init__(self, session_factory: sessionmaker, model: type | None = None) -> None:
        self.session_factory = session_factory
        if model is not None:
            self.model = model
        if self.model is None:
            raise ValueError("Repository requires a mapped model")

    @property
    def table(self):
        return self.model.__table__

    def to_dict(self, obj: Any) -> dict[str, Any]:
        return {
            column.name: getattr(obj, column.name)
            for column in self.table.columns
            if column.name not in self.hidden_fields
        }

    def find(self, record_id: Any) -> dict[str, Any] | None:
        key = self._primary_key(record_id)
        if key is None:
            return None
        session = self.session_factory()
        try:
            obj = session.get(self.model, key)
            return self.to_dict(obj) if obj is not None else None
        finally:
            session.close()

    def exists(self, record_id: Any) -> bool:
        return self.find(record_id) is not None

    def all(
        self,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        order: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(self.model)
        for name, value in (filters or {}).items():
            stmt = stmt.where(self._column(name) == value)
        stmt = stmt.order_by(*[self._column(name) for name in (order or self.default_order)])
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        session = self.session_factory()
        try:
            return [self.to_dict(obj) for obj in session.scalars(stmt).all()]
        finally:
            session.close()

    def first_where(self, **filters: Any) -> dict[str, Any] | None:
        rows = self.all(filters, limit=1)
        return rows[0] if rows else None

    def count(self, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.model)
        for name, value in filters.items():
            stmt = stmt.where(self._column(name) == value)
        session = self.session_factory()
        try:
            return int(session.execute(stmt).scalar() or 0)
        finally:
            session.close()

    def create(self, data: Mapping[str, Any]) -> dict[str, Any]:
        values = self._clean(data)
        missing = [
            column.name
            for column in self.table.columns
            if column.name not in AUTO_COLUMNS
            and not column.nullable
            and column.default is None
            and column.server_default is None
            and values.get(column.name) is None
        ]
        if missing:
            raise ValidationError(f"Field '{missing[0]}' is required.")
        obj = self.model(**values)
        session = self.session_factory()
        try:
            session.add(obj)
            session.commit()
            session.refresh(obj)
            return self.to_dict(obj)
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Record conflicts with existing data.") from exc
        finally:
            session.close()

    def update(self, record_id: Any, data: Mapping[str, Any]) -> int:
        values = self._clean(data)
        if not values:
            raise ValidationError("No data provided for update.")
        key = self._primary_key(record_id)
        if key is None:
            return 0
        session = self.session_factory()
        try:
            obj = session.get(self.model, key)
            if obj is None:
                return 0
            for name, value in values.items():
                setattr(obj, name, value)
            session.commit()
            return 1
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError("Record conflicts with existing data.") from exc
        finally:
            session.close()

    def delete(self, record_id: Any) -> int:
        key = self._primary_key(record_id)
        if key is None:
            return 0
        session = self.session_factory()
        try:
            obj = session.get(self.model, key)
            if obj is None:
                return 0
            session.delete(obj)
            session.commit()
            return 1
        finally:
            session.close()

    def _clean(self, data: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(data, Mapping):
            raise ValidationError("Missing data or invalid JSON body.")
        columns = {column.name: column for column in self.table.columns}
        unknown = sorted(key for key in data if key not in columns)
        if unknown:
            raise unprocessable(f"Unknown field(s): {', '.join(unknown)}.")
        return {
            name: coerce_value(columns[name], value)
            for name, value in data.items()
            if name not in AUTO_COLUMNS
        }

    def _column(self, name: str):
        try:
            return self.table.columns[name]
        except KeyError as exc:
            raise ValidationError(f"Unknown field '{name}'.") from exc

    def _primary_key(self, record_id: Any) -> int | None:
        try:
            key = int(record_id)
        except (TypeError, ValueError):
            return None
        return key if key > 0 else None


class AccountRepository(Repository):
    model = User
    hidden_fields = ("password_hash",)

    def find_by_email(self, email: str) -> dict[str, Any] | None:
        return self.first_where(email=email.strip().lower())

    def email_exists(self, email: str) -> bool:
        return self.find_by_email(email) is not None


class PersonnelRepository(Repository):
    model = Personnel
    default_order = ("last_name", "first_name")

    def find_by_matricule(self, matricule: str) -> dict[str, Any] | None:
        return self.first_where(matricule=matricule.strip())


class AxisRepository(Repository):
    model = Axis

    def find_by_name(self, name: str) -> dict[str, Any] | None:
        return self.first_where(name=name.strip())


class StopRepository(Repository):
    model = Stop
    default_order = ("axis_id", "position")

    def next_position(self, axis_id: int) -> int:
        session = self.session_factory()
        try:
            current = session.execute(
                select(func.max(Stop.position)).where(Stop.axis_id == axis_id)
            ).scalar()
        finally:
            session.close()
        return int(current or 0) + 1


class VehicleRepository(Repository):
    model = Vehicle

    def find_available(self) -> dict[str, Any] | None:
        return self.first_where(available=True)


class AssignmentRepository(Repository):
    model = Assignment
    default_order = ("assignment_date", "id")

    def assignment_exists(self, vehicle_id: int, personnel_id: int, assignment_date: date) -> bool:
        return self.count(
            vehicle_id=vehicle_id,
            personnel_id=personnel_id,
            assignment_date=assignment_date,
        ) > 0


class PlanningRepository(Repository):
    model = Planning
    default_order = ("day", "departure_time")


class TripRepository(Repository):
    model = Trip
    default_order = ("created_at", "id")

    def needing_routes(self) -> list[dict[str, Any]]:
        """Trips stored with a straight-line fallback or without a computed route."""
        stmt = (
            select(Trip)
            .where(or_(Trip.is_fallback.is_(True), Trip.distance_km.is_(None), Trip.path_geojson.is_(None)))
            .order_by(Trip.id)
        )
        session = self.session_factory()
        try:
            return [self.to_dict(obj) for obj in session.scalars(stmt).all()]
        finally:
            session.close()

    def route_counts(self) -> dict[str, int]:
        session = self.session_factory()
        try:
            total = int(session.execute(select(func.count()).select_from(Trip)).scalar() or 0)
            with_route = int(
                session.execute(
                    select(func.count())
                    .select_from(Trip)
                    .where(Trip.is_fallback.is_(False), Trip.path_geojson.is_not(None))
                ).scalar()
                or 0
            )
        finally:
            session.close()
        return {"total": total, "with_route": with_route, "without_route": total - with_route}
