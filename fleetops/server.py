from __future__ import annotations

import logging

from flask import Flask, Response, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fleetops.api import (
    AssignmentController,
    AxisController,
    ImportController,
    PersonnelController,
    ReportController,
    StopController,
    TrackingController,
    TripController,
    UserController,
    VehicleController,
)
from fleetops.auth import SESSION_COOKIE_NAME, AuthGuard, AuthService, SessionStore
from fleetops.config import Settings, load_settings
from fleetops.core import RequestContext, Router
from fleetops.core.router import json_response
from fleetops.errors import AppError
from fleetops.logging import AuditLogger, configure_logging
from fleetops.models import Base
from fleetops.repositories import (
    AccountRepository,
    AssignmentRepository,
    AxisRepository,
    PersonnelRepository,
    StopRepository,
    TripRepository,
    VehicleRepository,
)
from fleetops.services import CsvImporter, EmailService, PlanningReport, RoutingClient, TrackingService

logger = logging.getLogger("fleetops.server")

HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
CORS_ALLOW_HEADERS = "Origin, Content-Type, Accept, Authorization, X-Requested-With, X-CSRF-Token"


def cookie_domain(host: str) -> str | None:
    hostname = host.rsplit(":", 1)[0] if host.count(":") == 1 else host
    # Browsers reject single-label domains such as "localhost".
    if not hostname or "." not in hostname:
        return None
    return hostname


def build_router(
    settings: Settings,
    session_factory: sessionmaker,
    sessions: SessionStore,
    mailer,
    routing_client: RoutingClient,
) -> tuple[Router, AuthGuard]:
    accounts = AccountRepository(session_factory)
    personnels = PersonnelRepository(session_factory)
    axes = AxisRepository(session_factory)
    stops = StopRepository(session_factory)
    vehicles = VehicleRepository(session_factory)
    assignments = AssignmentRepository(session_factory)
    trips = TripRepository(session_factory)

    guard = AuthGuard(sessions, accounts)
    service = AuthService(
        session_factory,
        sessions,
        mailer,
        audit=AuditLogger(session_factory),
        accounts=accounts,
        max_failed_attempts=settings.max_failed_logins,
        lockout_minutes=settings.lockout_minutes,
    )

    router = Router(prefix=settings.api_prefix)
    controllers = [
        UserController(guard, service, accounts, debug=settings.is_development),
        PersonnelController(guard, personnels, stops),
        AxisController(guard, axes),
        StopController(guard, stops, axes),
        VehicleController(guard, vehicles),
        AssignmentController(guard, assignments, personnels, vehicles, stops),
        TripController(guard, trips, personnels, stops, routing_client),
        ReportController(guard, PlanningReport(session_factory)),
        ImportController(guard, CsvImporter(session_factory)),
        TrackingController(guard, TrackingService(session_factory)),
    ]
    for controller in controllers:
        controller.register(router)
    return router, guard


def create_app(
    settings: Settings | None = None,
    mailer=None,
    routing_client: RoutingClient | None = None,
    engine: Engine | None = None,
) -> Flask:
    settings = settings or load_settings()
    configure_logging(settings.app_env)

    app = Flask(__name__)
    engine = engine or create_engine(settings.database_url, future=True, pool_pre_ping=True)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    Base.metadata.create_all(engine)

    sessions = SessionStore(settings.session_timeout_seconds)
    router, guard = build_router(
        settings,
        SessionLocal,
        sessions,
        mailer or EmailService.from_settings(settings),
        routing_client or RoutingClient(settings.routing_base_url, settings.routing_timeout_seconds),
    )
    app.config["FLEETOPS_SETTINGS"] = settings
    app.config["SESSION_STORE"] = sessions
    app.config["SESSION_FACTORY"] = SessionLocal
    app.config["ROUTER"] = router

    def error_response(exc: AppError) -> Response:
        body = exc.to_dict()
        if exc.status >= 500 and settings.is_development and exc.__cause__ is not None:
            body["error"] = str(exc.__cause__)
        return json_response(body, exc.status)

    def persist_session(response: Response, ctx: RequestContext, cookie_value: str | None) -> None:
        domain = cookie_domain(request.host)
        if ctx.session is not None:
            sessions.save(ctx.session)
            if ctx.session.id != cookie_value:
                response.set_cookie(
                    SESSION_COOKIE_NAME,
                    ctx.session.id,
                    path="/",
                    domain=domain,
                    secure=ctx.is_secure,
                    httponly=True,
                    samesite="Lax",
                )
        elif cookie_value:
            response.delete_cookie(
                SESSION_COOKIE_NAME,
                path="/",
                domain=domain,
                secure=ctx.is_secure,
                httponly=True,
                samesite="Lax",
            )

    @app.after_request
    def after_request(response: Response) -> Response:
        allowed = settings.cors_allowed_origins
        origin = request.headers.get("Origin", "")
        if allowed:
            response.headers["Access-Control-Allow-Origin"] = origin if origin in allowed else allowed[0]
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        response.headers["Vary"] = "Origin"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.route("/health")
    def health():
        try:
            with engine.connect() as connection:
                connection.execute(text("select 1"))
        except SQLAlchemyError:
            logger.exception("health check failed")
            return json_response({"status": "error", "detail": "database_unavailable"}, 503)
        return json_response({"status": "ok"})

    @app.route("/", defaults={"path": ""}, methods=HTTP_METHODS)
    @app.route("/<path:path>", methods=HTTP_METHODS)
    def dispatch(path: str) -> Response:
        if request.method == "OPTIONS":
            return Response(status=204)

        ctx = RequestContext(request=request)
        cookie_value = request.cookies.get(SESSION_COOKIE_NAME)
        guard.load(ctx, cookie_value)
        guard.enforce_activity(ctx)

        try:
            response = router.dispatch(request, ctx)
        except AppError as exc:
            if exc.status >= 500:
                logger.error("%s %s failed: %s", request.method, request.path, exc, exc_info=exc.__cause__ is not None)
            response = error_response(exc)
        except Exception as exc:
            logger.exception("unhandled error on %s %s", request.method, request.path)
            body = {"ok": False, "message": "Server error."}
            if settings.is_development:
                body["error"] = str(exc)
            response = json_response(body, 500)

        persist_session(response, ctx, cookie_value)
        return response

    return app
