"""Transport tracking: planned headcount per departure shift against the
headcount counted on the transport sheets.

Planned figures come from the planning table; counted figures and gaps are
entered by operators and stored per day and shift in ``transport_checks``.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Mapping

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fleetops.errors import ValidationError
from fleetops.models import Axis, Personnel, Planning, Stop, TransportCheck

logger = logging.getLogger("fleetops.tracking")

REQUIRED_FIELDS = ("date", "shift", "counted", "gap")
CHECK_COLUMNS = ["day", "shift", "counted", "gap"]


def month_range(month: str) -> tuple[date, date]:
    try:
        first = datetime.strptime(month, "%Y-%m").date()
    except ValueError as exc:
        raise ValidationError("Invalid month parameter (expected YYYY-MM).") from exc
    return first, first.replace(day=calendar.monthrange(first.year, first.month)[1])


def shift_label(value: time | str) -> str:
    if isinstance(value, time):
        return value.strftime("%H:%M")
    return time.fromisoformat(str(value).strip()).strftime("%H:%M")


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def week_label(start: date) -> str:
    end = start + timedelta(days=6)
    return f"S{start.isocalendar()[1]} ({start:%d/%m} - {end:%d/%m})"


class TrackingService:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def history(self, start: date, end: date) -> list[dict[str, Any]]:
        """One row per day and shift: planned headcount merged with the saved sheet counts."""
        stmt = (
            select(
                Planning.day,
                Planning.departure_time,
                func.count(func.distinct(Planning.personnel_id)).label("ordered"),
            )
            .select_from(Planning)
            .join(Personnel, Personnel.id == Planning.personnel_id)
            .where(Personnel.planned.is_(True), Planning.day.between(start, end))
            .group_by(Planning.day, Planning.departure_time)
        )
        session = self.session_factory()
        try:
            planned = [tuple(row) for row in session.execute(stmt)]
            checks = self._checks(session, start, end)
        finally:
            session.close()

        ordered = pd.DataFrame(planned, columns=["day", "departure_time", "ordered"])
        ordered["shift"] = [shift_label(value) for value in ordered["departure_time"]]
        ordered = ordered.groupby(["day", "shift"], as_index=False)["ordered"].sum()
        saved = pd.DataFrame(checks, columns=CHECK_COLUMNS)

        frame = ordered.merge(saved, on=["day", "shift"], how="outer")
        counts = ["ordered", "counted", "gap"]
        frame[counts] = frame[counts].fillna(0).astype(int)
        frame = frame.sort_values(["day", "shift"])
        return [
            {
                "date": record["day"].isoformat(),
                "shift": record["shift"],
                "ordered": int(record["ordered"]),
                "counted": int(record["counted"]),
                "gap": int(record["gap"]),
            }
            for record in frame.to_dict("records")
        ]

    def daily(self, day: date) -> list[dict[str, Any]]:
        return self.history(day, day)

    def weekly_summary(self, start: date, end: date) -> list[dict[str, Any]]:
        """Per ISO week: distinct planned personnel and the summed sheet counts."""
        stmt = (
            select(Planning.day, Planning.personnel_id)
            .select_from(Planning)
            .join(Personnel, Personnel.id == Planning.personnel_id)
            .where(Personnel.planned.is_(True), Planning.day.between(start, end))
        )
        session = self.session_factory()
        try:
            planned = [tuple(row) for row in session.execute(stmt)]
            checks = self._checks(session, start, end)
        finally:
            session.close()

        people = pd.DataFrame(planned, columns=["day", "personnel_id"])
        people["week_start"] = [week_start(day) for day in people["day"]]
        saved = pd.DataFrame(checks, columns=CHECK_COLUMNS)
        saved["week_start"] = [week_start(day) for day in saved["day"]]

        summary = pd.concat(
            [
                people.groupby("week_start")["personnel_id"].nunique().rename("total_ordered"),
                saved.groupby("week_start")[["counted", "gap"]]
                .sum()
                .rename(columns={"counted": "total_counted", "gap": "total_gap"}),
            ],
            axis=1,
        )
        summary = summary.reindex(columns=["total_ordered", "total_counted", "total_gap"]).fillna(0).sort_index()
        return [
            {
                "week": week_label(start_day),
                "week_start": start_day.isoformat(),
                "week_end": (start_day + timedelta(days=6)).isoformat(),
                "total_ordered": int(row["total_ordered"]),
                "total_counted": int(row["total_counted"]),
                "total_gap": int(row["total_gap"]),
            }
            for start_day, row in summary.iterrows()
        ]

    def monthly(self, month: str) -> dict[str, list[dict[str, Any]]]:
        start, end = month_range(month)
        return {"history": self.history(start, end), "weekly_summary": self.weekly_summary(start, end)}

    def detailed(self, day: date) -> list[dict[str, Any]]:
        """Planned headcount for ``day`` broken down by shift, axis and stop."""
        stmt = (
            select(
                Planning.departure_time,
                Axis.name.label("axis"),
                Stop.name.label("stop"),
                func.count(func.distinct(Personnel.id)).label("ordered"),
            )
            .select_from(Planning)
            .join(Personnel, Personnel.id == Planning.personnel_id)
            .outerjoin(Stop, Personnel.stop_id == Stop.id)
            .outerjoin(Axis, Stop.axis_id == Axis.id)
            .where(Personnel.planned.is_(True), Planning.day == day)
            .group_by(Planning.departure_time, Axis.name, Stop.name)
        )
        session = self.session_factory()
        try:
            rows = [tuple(row) for row in session.execute(stmt)]
        finally:
            session.close()

        frame = pd.DataFrame(rows, columns=["departure_time", "axis", "stop", "ordered"])
        frame["shift"] = [shift_label(value) for value in frame["departure_time"]]
        frame = frame.groupby(["shift", "axis", "stop"], as_index=False, dropna=False)["ordered"].sum()
        frame = frame.sort_values(["shift", "axis", "stop"], na_position="last")
        frame = frame.astype(object).where(frame.notna(), None)
        return [
            {
                "date": day.isoformat(),
                "shift": record["shift"],
                "axis": record["axis"],
                "stop": record["stop"],
                "ordered": int(record["ordered"]),
            }
            for record in frame.to_dict("records")
        ]

    def available_months(self) -> list[dict[str, str]]:
        session = self.session_factory()
        try:
            days = session.scalars(select(Planning.day).distinct()).all()
        finally:
            session.close()
        months = sorted({day.strftime("%Y-%m") for day in days}, reverse=True)
        return [
            {"month": month, "label": datetime.strptime(month, "%Y-%m").strftime("%B %Y")}
            for month in months
        ]

    def saved(self, start: date | None = None, end: date | None = None) -> list[dict[str, Any]]:
        stmt = select(TransportCheck).order_by(TransportCheck.day.desc(), TransportCheck.shift)
        if start is not None:
            stmt = stmt.where(TransportCheck.day >= start)
        if end is not None:
            stmt = stmt.where(TransportCheck.day <= end)
        session = self.session_factory()
        try:
            return [
                {
                    "id": check.id,
                    "date": check.day.isoformat(),
                    "shift": check.shift,
                    "counted": check.counted,
                    "gap": check.gap,
                    "updated_at": check.updated_at,
                }
                for check in session.scalars(stmt)
            ]
        finally:
            session.close()

    def record(self, updates: Iterable[Any]) -> dict[str, list[dict[str, Any]]]:
        """Upsert sheet counts; each item is applied or reported on its own."""
        success: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        session = self.session_factory()
        try:
            for item in updates:
                try:
                    values = self._parse_update(item)
                except ValidationError as exc:
                    errors.append({"data": item, "error": exc.message})
                    continue
                savepoint = session.begin_nested()
                try:
                    check = session.scalars(
                        select(TransportCheck).where(
                            TransportCheck.day == values["day"],
                            TransportCheck.shift == values["shift"],
                        )
                    ).first()
                    if check is None:
                        session.add(TransportCheck(**values))
                    else:
                        check.counted = values["counted"]
                        check.gap = values["gap"]
                    session.flush()
                except IntegrityError as exc:
                    savepoint.rollback()
                    errors.append({"data": item, "error": str(exc.orig)})
                    continue
                savepoint.commit()
                success.append(
                    {
                        "date": values["day"].isoformat(),
                        "shift": values["shift"],
                        "counted": values["counted"],
                        "gap": values["gap"],
                    }
                )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("tracking updates saved=%s rejected=%s", len(success), len(errors))
        return {"success": success, "errors": errors}

    def _checks(self, session, start: date, end: date) -> list[tuple]:
        stmt = select(TransportCheck.day, TransportCheck.shift, TransportCheck.counted, TransportCheck.gap).where(
            TransportCheck.day.between(start, end)
        )
        return [tuple(row) for row in session.execute(stmt)]

    def _parse_update(self, item: Any) -> dict[str, Any]:
        if not isinstance(item, Mapping) or any(item.get(name) in (None, "") for name in REQUIRED_FIELDS):
            raise ValidationError("Missing data.")
        try:
            day = date.fromisoformat(str(item["date"]))
            shift = shift_label(item["shift"])
            counted = int(item["counted"])
            gap = int(item["gap"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid value.") from exc
        if counted < 0:
            raise ValidationError("Counted headcount cannot be negative.")
        return {"day": day, "shift": shift, "counted": counted, "gap": gap}
