from __future__ import annotations

import json
import logging
import math
from typing import Any

from flask import Response

from fleetops.auth import EDITOR_ROLES, AuthGuard
from fleetops.core import RequestContext, Router
from fleetops.errors import AppError, NotFoundError, ValidationError
from fleetops.repositories import PersonnelRepository, StopRepository, TripRepository
from fleetops.services import Point, RouteResult, RoutingClient

from .base import Controller, parse_id, protected, require_body

logger = logging.getLogger("fleetops.api.trips")


def _as_float(value: Any) -> float | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        number = float(str(value).replace(",", "."))
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _coordinate(value: Any, bound: float, name: str) -> float | None:
    number = _as_float(value)
    if number is not None and abs(number) > bound:
        raise ValidationError(f"Coordinate {name} out of range.")
    return number


class TripController(Controller):
    def __init__(
        self,
        guard: AuthGuard,
        trips: TripRepository,
        personnels: PersonnelRepository,
        stops: StopRepository,
        routing: RoutingClient,
    ) -> None:
        super().__init__(guard)
        self.trips = trips
        self.personnels = personnels
        self.stops = stops
        self.routing = routing

    def register(self, router: Router) -> None:
        router.get("/trips", self.index)
        router.post("/trips/simulate", self.simulate)
        router.post("/trips/update-route", self.update_route)
        router.post("/trips/update-all-routes", self.update_all_routes)
        router.post("/trips", self.store)
        router.get("/trips/{id}", self.show)

    @protected()
    def index(self, ctx: RequestContext) -> Response:
        limit = ctx.query_int("limit", minimum=1)
        offset = ctx.query_int("offset", minimum=0)
        filters: dict[str, Any] = {}
        personnel_id = ctx.query_int("personnel_id", minimum=1)
        if personnel_id:
            filters["personnel_id"] = personnel_id
        rows = [self._format(row) for row in self.trips.all(filters, limit=limit, offset=offset)]
        total = self.trips.count(**filters)
        return self.respond({"data": rows, "meta": {"total": total, "limit": limit, "offset": offset}})

    @protected()
    def show(self, ctx: RequestContext, id: str) -> Response:
        row = self.trips.find(parse_id(id))
        if row is None:
            raise NotFoundError("Trip not found.")
        return self.respond({"data": self._format(row)})

    @protected(roles=EDITOR_ROLES, csrf=True)
    def store(self, ctx: RequestContext) -> Response:
        data = require_body(ctx)
        personnel_id = data.get("personnel_id")
        if personnel_id in (None, ""):
            raise ValidationError("Personnel required (personnel_id).")
        if not self.personnels.exists(personnel_id):
            raise ValidationError("Personnel not found.")
        origin = self._resolve_point(data, "origin")
        destination = self._resolve_point(data, "destination")

        route = self.routing.route(origin, destination)
        created = self.trips.create(
            {
                "personnel_id": personnel_id,
                "origin_label": origin.label,
                "origin_lat": origin.lat,
                "origin_lng": origin.lng,
                "destination_label": destination.label,
                "destination_lat": destination.lat,
                "destination_lng": destination.lng,
                "distance_km": route.distance_km,
                "duration_min": route.duration_min,
                "path_geojson": json.dumps(route.geometry),
                "is_fallback": route.is_fallback,
            }
        )
        logger.info("trip created id=%s fallback=%s", created["id"], route.is_fallback)
        return self.respond({"success": True, "id": created["id"], "route": route.to_dict()}, 201)

    @protected()
    def simulate(self, ctx: RequestContext) -> Response:
        body = ctx.json_body()
        values = {}
        for name in ("start_lat", "start_lng", "end_lat", "end_lng"):
            bound = 90.0 if name.endswith("_lat") else 180.0
            values[name] = _coordinate(ctx.request.args.get(name, body.get(name)), bound, name)
        if any(value is None for value in values.values()):
            raise ValidationError("Parameters start_lat, start_lng, end_lat, end_lng are required and numeric.")
        route = self.routing.route(
            Point(values["start_lat"], values["start_lng"]),
            Point(values["end_lat"], values["end_lng"]),
        )
        return self.respond({"route": route.to_dict()})

    @protected(roles=EDITOR_ROLES, csrf=True)
    def update_route(self, ctx: RequestContext) -> Response:
        data = require_body(ctx)
        trip_id = data.get("id", data.get("trip_id"))
        if trip_id in (None, ""):
            raise ValidationError("Trip id required.")
        row = self.trips.find(parse_id(str(trip_id)))
        if row is None:
            raise NotFoundError("Trip not found.")
        route = self._refresh(row)
        return self.respond({"success": True, "id": row["id"], "route": route.to_dict()})

    @protected(roles=EDITOR_ROLES, csrf=True)
    def update_all_routes(self, ctx: RequestContext) -> Response:
        pending = self.trips.needing_routes()
        results: dict[str, Any] = {"total": len(pending), "updated": 0, "still_fallback": 0, "errors": []}
        for row in pending:
            try:
                route = self._refresh(row)
            except AppError as exc:
                results["errors"].append(f"Trip {row['id']}: {exc.message}")
                continue
            results["updated"] += 1
            if route.is_fallback:
                results["still_fallback"] += 1
        logger.info(
            "trip routes refreshed total=%s updated=%s fallback=%s",
            results["total"],
            results["updated"],
            results["still_fallback"],
        )
        return self.respond({"success": True, "results": results, "verification": self.trips.route_counts()})

    def _refresh(self, row: dict[str, Any]) -> RouteResult:
        route = self.routing.route(
            Point(row["origin_lat"], row["origin_lng"], row.get("origin_label")),
            Point(row["destination_lat"], row["destination_lng"], row.get("destination_label")),
        )
        self.trips.update(
            row["id"],
            {
                "distance_km": route.distance_km,
                "duration_min": route.duration_min,
                "path_geojson": json.dumps(route.geometry),
                "is_fallback": route.is_fallback,
            },
        )
        return route

    def _resolve_point(self, data: dict[str, Any], which: str) -> Point:
        stop_id = data.get(f"{which}_stop_id")
        if stop_id not in (None, ""):
            stop = self.stops.find(stop_id)
            if stop is None:
                raise ValidationError(f"{which.capitalize()} stop not found.")
            if stop["latitude"] is None or stop["longitude"] is None:
                raise ValidationError(f"{which.capitalize()} stop has no coordinates.")
            return Point(stop["latitude"], stop["longitude"], stop["name"])

        lat = _coordinate(data.get(f"{which}_lat"), 90.0, f"{which}_lat")
        lng = _coordinate(data.get(f"{which}_lng"), 180.0, f"{which}_lng")
        if lat is None or lng is None:
            raise ValidationError(f"{which.capitalize()} point required.")
        return Point(lat, lng, data.get(f"{which}_label"))

    def _format(self, row: dict[str, Any]) -> dict[str, Any]:
        formatted = dict(row)
        raw = formatted.pop("path_geojson", None)
        try:
            formatted["geojson"] = json.loads(raw) if raw else None
        except ValueError:
            formatted["geojson"] = None
        return formatted
