from __future__ import annotations

import logging
import re
from datetime import date, datetime

from flask import Response

from fleetops.auth import EDITOR_ROLES, AuthGuard
from fleetops.core import RequestContext, Router
from fleetops.errors import ValidationError
from fleetops.services import TrackingService
from fleetops.services.tracking import month_range

from .base import Controller, protected

logger = logging.getLogger("fleetops.api.tracking")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")
MODES = ("daily", "monthly", "weekly")


def _parse_date(raw: str) -> date:
    if not DATE_PATTERN.match(raw):
        raise ValidationError("Invalid date parameter (expected YYYY-MM-DD).")
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValidationError("Invalid date parameter (expected YYYY-MM-DD).") from exc


def _check_month(raw: str) -> str:
    if not MONTH_PATTERN.match(raw):
        raise ValidationError("Invalid month parameter (expected YYYY-MM).")
    month_range(raw)
    return raw


class TrackingController(Controller):
    # /suivit is the path older frontend builds call.
    prefixes = ("/tracking", "/suivit")

    def __init__(self, guard: AuthGuard, tracking: TrackingService) -> None:
        super().__init__(guard)
        self.tracking = tracking

    def register(self, router: Router) -> None:
        for prefix in self.prefixes:
            router.get(prefix, self.overview)
            router.get(f"{prefix}/saved", self.saved)
            router.get(f"{prefix}/export", self.export)
            router.get(f"{prefix}/months", self.months)
            router.put(f"{prefix}/update", self.update)
            router.post(f"{prefix}/update", self.update)

    @protected()
    def overview(self, ctx: RequestContext) -> Response:
        args = ctx.request.args
        mode = args.get("mode") or "daily"
        raw_date = args.get("date") or date.today().isoformat()
        month = args.get("month") or date.today().strftime("%Y-%m")
        if mode not in MODES:
            raise ValidationError(f"Invalid mode '{mode}' (expected daily, monthly or weekly).")

        if mode == "daily":
            history = self.tracking.daily(_parse_date(raw_date))
            weekly = []
        elif mode == "monthly":
            view = self.tracking.monthly(_check_month(month))
            history, weekly = view["history"], view["weekly_summary"]
        else:
            start, end = month_range(_check_month(month))
            history = weekly = self.tracking.weekly_summary(start, end)

        return self.respond(
            {
                "success": True,
                "data": {"history": history, "weekly_summary": weekly},
                "meta": {"mode": mode, "date": raw_date, "month": month, "total_records": len(history)},
            }
        )

    @protected()
    def saved(self, ctx: RequestContext) -> Response:
        raw_date = ctx.request.args.get("date")
        month = ctx.request.args.get("month")
        start = end = None
        if raw_date:
            start = end = _parse_date(raw_date)
        elif month:
            start, end = month_range(_check_month(month))
        rows = self.tracking.saved(start, end)
        return self.respond(
            {
                "success": True,
                "data": rows,
                "meta": {
                    "start": start.isoformat() if start else None,
                    "end": end.isoformat() if end else None,
                    "total_records": len(rows),
                },
            }
        )

    @protected()
    def export(self, ctx: RequestContext) -> Response:
        day = _parse_date(ctx.request.args.get("date") or date.today().isoformat())
        rows = self.tracking.detailed(day)
        return self.respond({"success": True, "data": rows, "meta": {"date": day.isoformat(), "total_records": len(rows)}})

    @protected()
    def months(self, ctx: RequestContext) -> Response:
        months = self.tracking.available_months()
        return self.respond({"success": True, "data": months, "meta": {"total": len(months)}})

    @protected(roles=EDITOR_ROLES, csrf=True)
    def update(self, ctx: RequestContext) -> Response:
        body = ctx.body
        updates = body.get("updates") if isinstance(body, dict) else None
        if not isinstance(updates, list):
            raise ValidationError("Invalid update payload (expected an 'updates' list).")

        results = self.tracking.record(updates)
        saved, failed = results["success"], results["errors"]
        logger.info("tracking update account_id=%s saved=%s failed=%s", ctx.session.account_id, len(saved), len(failed))
        if not failed:
            return self.respond({"success": True, "message": f"{len(saved)} update(s) saved.", "data": saved})
        return self.respond(
            {
                "success": False,
                "message": f"{len(saved)} saved, {len(failed)} failed.",
                "data": {"success": saved, "errors": failed},
            }
        )
