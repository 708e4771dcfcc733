from __future__ import annotations

import logging
from typing import Any

from flask import Response

from fleetops.auth import ADMIN_ROLES, EDITOR_ROLES, AuthGuard
from fleetops.core import RequestContext, Router
from fleetops.errors import ConflictError, NotFoundError, ValidationError
from fleetops.repositories import (
    AssignmentRepository,
    AxisRepository,
    PersonnelRepository,
    Repository,
    StopRepository,
    VehicleRepository,
    coerce_value,
)

from .base import Controller, parse_id, protected, require_body

logger = logging.getLogger("fleetops.api.resources")


class ResourceController(Controller):
    """List/show/create/update/delete over one repository.

    Reads need a session; writes additionally need the CSRF header and an
    editor role, and deletes are reserved to administrators.
    """

    path: str = ""
    label: str = "Record"
    filterable: tuple[str, ...] = ()

    def __init__(self, guard: AuthGuard, repository: Repository) -> None:
        super().__init__(guard)
        self.repository = repository

    def register(self, router: Router) -> None:
        router.get(self.path, self.index)
        router.post(self.path, self.store)
        router.get(self.path + "/{id}", self.show)
        router.put(self.path + "/{id}", self.update)
        router.patch(self.path + "/{id}", self.update)
        router.delete(self.path + "/{id}", self.destroy)

    @protected()
    def index(self, ctx: RequestContext) -> Response:
        limit = ctx.query_int("limit", minimum=1)
        offset = ctx.query_int("offset", minimum=0)
        filters = self.filters(ctx)
        rows = self.repository.all(filters, limit=limit, offset=offset)
        total = self.repository.count(**filters)
        return self.respond({"data": rows, "meta": {"total": total, "limit": limit, "offset": offset}})

    @protected()
    def show(self, ctx: RequestContext, id: str) -> Response:
        row = self.repository.find(parse_id(id))
        if row is None:
            raise NotFoundError(f"{self.label} not found.")
        return self.respond({"data": row})

    @protected(roles=EDITOR_ROLES, csrf=True)
    def store(self, ctx: RequestContext) -> Response:
        data = require_body(ctx)
        data.pop("id", None)
        data = self.before_create(data)
        created = self.repository.create(data)
        logger.info("%s created id=%s by account_id=%s", self.path, created["id"], ctx.session.account_id)
        return self.respond({"success": True, "id": created["id"]}, 201)

    @protected(roles=EDITOR_ROLES, csrf=True)
    def update(self, ctx: RequestContext, id: str) -> Response:
        record_id = parse_id(id)
        data = require_body(ctx)
        data.pop("id", None)
        if not self.repository.exists(record_id):
            raise NotFoundError(f"{self.label} not found.")
        data = self.before_update(record_id, data)
        affected = self.repository.update(record_id, data)
        return self.respond({"success": True, "affected": affected})

    @protected(roles=ADMIN_ROLES, csrf=True)
    def destroy(self, ctx: RequestContext, id: str) -> Response:
        deleted = self.repository.delete(parse_id(id))
        if not deleted:
            raise NotFoundError(f"{self.label} not found.")
        logger.info("%s deleted id=%s by account_id=%s", self.path, id, ctx.session.account_id)
        return self.respond({"success": True, "deleted": deleted})

    def filters(self, ctx: RequestContext) -> dict[str, Any]:
        columns = self.repository.table.columns
        filters: dict[str, Any] = {}
        for name in self.filterable:
            raw = ctx.request.args.get(name)
            if raw is not None and raw.strip() != "":
                filters[name] = coerce_value(columns[name], raw.strip())
        return filters

    def before_create(self, data: dict[str, Any]) -> dict[str, Any]:
        return data

    def before_update(self, record_id: int, data: dict[str, Any]) -> dict[str, Any]:
        return data


class PersonnelController(ResourceController):
    path = "/personnels"
    label = "Personnel"
    filterable = ("stop_id", "planned", "campaign")

    def __init__(self, guard: AuthGuard, repository: PersonnelRepository, stops: StopRepository) -> None:
        super().__init__(guard, repository)
        self.stops = stops

    def before_create(self, data: dict[str, Any]) -> dict[str, Any]:
        matricule = str(data.get("matricule") or "").strip()
        if matricule and self.repository.find_by_matricule(matricule):
            raise ConflictError("Matricule already in use.")
        self._check_stop(data)
        return data

    def before_update(self, record_id: int, data: dict[str, Any]) -> dict[str, Any]:
        self._check_stop(data)
        return data

    def _check_stop(self, data: dict[str, Any]) -> None:
        stop_id = data.get("stop_id")
        if stop_id not in (None, "") and not self.stops.exists(stop_id):
            raise ValidationError("Stop not found.")


class AxisController(ResourceController):
    path = "/axes"
    label = "Axis"


class StopController(ResourceController):
    path = "/stops"
    label = "Stop"
    filterable = ("axis_id",)

    def __init__(self, guard: AuthGuard, repository: StopRepository, axes: AxisRepository) -> None:
        super().__init__(guard, repository)
        self.axes = axes

    def before_create(self, data: dict[str, Any]) -> dict[str, Any]:
        axis_id = data.get("axis_id")
        if axis_id in (None, "") or not self.axes.exists(axis_id):
            raise ValidationError("Axis not found.")
        if data.get("position") in (None, ""):
            data["position"] = self.repository.next_position(int(axis_id))
        return data

    def before_update(self, record_id: int, data: dict[str, Any]) -> dict[str, Any]:
        if "axis_id" in data and not self.axes.exists(data["axis_id"]):
            raise ValidationError("Axis not found.")
        return data


class VehicleController(ResourceController):
    path = "/vehicles"
    label = "Vehicle"
    filterable = ("available",)


class AssignmentController(ResourceController):
    path = "/assignments"
    label = "Assignment"
    filterable = ("assignment_date", "vehicle_id", "personnel_id", "stop_id")
    required = ("vehicle_id", "stop_id", "personnel_id", "assignment_date")

    def __init__(
        self,
        guard: AuthGuard,
        repository: AssignmentRepository,
        personnels: PersonnelRepository,
        vehicles: VehicleRepository,
        stops: StopRepository,
    ) -> None:
        super().__init__(guard, repository)
        self.personnels = personnels
        self.vehicles = vehicles
        self.stops = stops

    def register(self, router: Router) -> None:
        super().register(router)
        router.post("/assign-personnel", self.assign_personnel)

    def before_create(self, data: dict[str, Any]) -> dict[str, Any]:
        for name in self.required:
            if data.get(name) in (None, ""):
                raise ValidationError(f"Field '{name}' is required.")
        self._check_links(data)
        columns = self.repository.table.columns
        assignment_date = coerce_value(columns["assignment_date"], data["assignment_date"])
        if self.repository.assignment_exists(int(data["vehicle_id"]), int(data["personnel_id"]), assignment_date):
            raise ConflictError("This personnel is already assigned to this vehicle on that date.")
        return data

    def before_update(self, record_id: int, data: dict[str, Any]) -> dict[str, Any]:
        self._check_links(data)
        return data

    @protected(roles=EDITOR_ROLES, csrf=True)
    def assign_personnel(self, ctx: RequestContext) -> Response:
        data = require_body(ctx)
        personnel_id = parse_id(data.get("personnel_id"))
        stop_id = parse_id(data.get("stop_id"))
        if not self.personnels.exists(personnel_id):
            raise ValidationError("Personnel not found.")
        if not self.stops.exists(stop_id):
            raise ValidationError("Stop not found.")
        affected = self.personnels.update(personnel_id, {"stop_id": stop_id})
        logger.info("personnel %s assigned to stop %s", personnel_id, stop_id)
        return self.respond({"success": True, "affected": affected})

    def _check_links(self, data: dict[str, Any]) -> None:
        links = (
            ("vehicle_id", self.vehicles, "Vehicle not found."),
            ("stop_id", self.stops, "Stop not found."),
            ("personnel_id", self.personnels, "Personnel not found."),
        )
        for name, repository, message in links:
            if name in data and not repository.exists(data[name]):
                raise ValidationError(message)
