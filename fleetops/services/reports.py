from __future__ import annotations

import logging
from datetime import date, time
from typing import Any

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from fleetops.models import Axis, Personnel, Planning, Stop

from .routing import haversine_km

logger = logging.getLogger("fleetops.reports")

REPORT_COLUMNS = [
    "departure_time",
    "axis_id",
    "axis_name",
    "stop_id",
    "stop_name",
    "stop_position",
    "stop_lat",
    "stop_lng",
    "personnel_id",
    "matricule",
    "full_name",
    "last_name",
    "job_title",
    "personnel_lat",
    "personnel_lng",
]
INTEGER_COLUMNS = ("axis_id", "stop_id", "stop_position", "personnel_id")


class PlanningReport:
    """Planned personnel for one departure slot, grouped along their axis."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def planned_personnel(self, day: date, departure_time: time) -> list[dict[str, Any]]:
        stmt = (
            select(
                Planning.departure_time,
                Axis.id.label("axis_id"),
                Axis.name.label("axis_name"),
                Stop.id.label("stop_id"),
                Stop.name.label("stop_name"),
                Stop.position.label("stop_position"),
                Stop.latitude.label("stop_lat"),
                Stop.longitude.label("stop_lng"),
                Personnel.id.label("personnel_id"),
                Personnel.matricule,
                Personnel.last_name,
                Personnel.first_name,
                Personnel.job_title,
                Personnel.latitude.label("personnel_lat"),
                Personnel.longitude.label("personnel_lng"),
            )
            .select_from(Personnel)
            .join(Planning, Planning.personnel_id == Personnel.id)
            .outerjoin(Stop, Personnel.stop_id == Stop.id)
            .outerjoin(Axis, Stop.axis_id == Axis.id)
            .where(
                Personnel.planned.is_(True),
                Planning.day == day,
                Planning.departure_time == departure_time,
            )
        )

        session = self.session_factory()
        try:
            rows = [dict(row._mapping) for row in session.execute(stmt)]
            stops = self._stops_by_axis(session, {row["axis_id"] for row in rows if row["axis_id"]})
        finally:
            session.close()

        if not rows:
            return []

        frame = pd.DataFrame(rows)
        frame["full_name"] = frame["last_name"].str.cat(frame["first_name"], sep=" ")
        frame = frame.sort_values(["axis_name", "stop_position", "last_name"], na_position="last")
        frame = frame[REPORT_COLUMNS].astype(object).where(frame[REPORT_COLUMNS].notna(), None)

        records = frame.to_dict("records")
        for record in records:
            for name in INTEGER_COLUMNS:
                if record[name] is not None:
                    record[name] = int(record[name])
            record.update(self._nearest_stop(record, stops.get(record["axis_id"], [])))
        logger.info("planning report day=%s time=%s rows=%s", day, departure_time, len(records))
        return records

    def _stops_by_axis(self, session, axis_ids: set[int]) -> dict[int, list[Stop]]:
        if not axis_ids:
            return {}
        grouped: dict[int, list[Stop]] = {}
        for stop in session.scalars(select(Stop).where(Stop.axis_id.in_(axis_ids)).order_by(Stop.position)):
            grouped.setdefault(stop.axis_id, []).append(stop)
        return grouped

    def _nearest_stop(self, record: dict[str, Any], stops: list[Stop]) -> dict[str, Any]:
        lat, lng = record.get("personnel_lat"), record.get("personnel_lng")
        candidates = [stop for stop in stops if stop.latitude is not None and stop.longitude is not None]
        if lat is None or lng is None or not candidates:
            return {"nearest_stop_id": None, "nearest_stop_name": None, "nearest_stop_km": None}
        distance, nearest = min(
            ((haversine_km(lat, lng, stop.latitude, stop.longitude), stop) for stop in candidates),
            key=lambda pair: (pair[0], pair[1].position),
        )
        return {"nearest_stop_id": nearest.id, "nearest_stop_name": nearest.name, "nearest_stop_km": distance}
