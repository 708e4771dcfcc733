from __future__ import annotations

from datetime import date, datetime, time, timezone

from flask import Response

from fleetops.auth import AuthGuard
from fleetops.core import RequestContext, Router
from fleetops.errors import ValidationError
from fleetops.services import PlanningReport

from .base import Controller, protected

DEFAULT_DEPARTURE = "19:00:00"


class ReportController(Controller):
    def __init__(self, guard: AuthGuard, planning: PlanningReport) -> None:
        super().__init__(guard)
        self.planning = planning

    def register(self, router: Router) -> None:
        router.get("/reports/planning", self.planned_personnel)

    @protected()
    def planned_personnel(self, ctx: RequestContext) -> Response:
        raw_date = ctx.request.args.get("date") or date.today().isoformat()
        raw_time = ctx.request.args.get("time") or DEFAULT_DEPARTURE
        try:
            day = datetime.strptime(raw_date, "%Y-%m-%d").date()
        except ValueError as exc:
            raise ValidationError("Invalid date parameter (expected YYYY-MM-DD).") from exc
        try:
            departure = datetime.strptime(raw_time, "%H:%M:%S").time()
        except ValueError as exc:
            raise ValidationError("Invalid time parameter (expected HH:MM:SS).") from exc

        rows = self.planning.planned_personnel(day, departure)
        return self.respond(
            {
                "data": rows,
                "metadata": {
                    "date": day.isoformat(),
                    "departure_time": departure.strftime("%H:%M:%S"),
                    "total_personnel": len(rows),
                    "generated_at": datetime.now(timezone.utc).isoformat(),
                },
            }
        )
