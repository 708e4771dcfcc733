from __future__ import annotations

import logging

from flask import Response

from fleetops.auth import EDITOR_ROLES, AuthGuard
from fleetops.core import RequestContext, Router
from fleetops.errors import ValidationError
from fleetops.services import CsvImporter

from .base import Controller, protected

logger = logging.getLogger("fleetops.api.imports")


class ImportController(Controller):
    def __init__(self, guard: AuthGuard, importer: CsvImporter) -> None:
        super().__init__(guard)
        self.importer = importer
        self.targets = {
            "personnels": importer.import_personnels,
            "axes": importer.import_axes,
            "stops": importer.import_stops,
            "vehicles": importer.import_vehicles,
            "assignments": importer.import_assignments,
        }

    def register(self, router: Router) -> None:
        router.post("/import/{target}", self.upload)

    @protected(roles=EDITOR_ROLES, csrf=True)
    def upload(self, ctx: RequestContext, target: str) -> Response:
        handler = self.targets.get(target)
        if handler is None:
            raise ValidationError(f"Unknown import target '{target}'.")
        upload = ctx.request.files.get("file")
        if upload is None or not upload.filename:
            raise ValidationError("No file provided.")
        if not upload.filename.lower().endswith(".csv"):
            raise ValidationError("Only CSV files are accepted.")

        result = handler(upload.read())
        logger.info("import target=%s file=%s inserted=%s", target, upload.filename, result["inserted"])
        return self.respond(result)
