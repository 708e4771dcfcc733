from __future__ import annotations

import json
from typing import Any

import httpx
from passlib.hash import argon2
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fleetops.config import Settings
from fleetops.models import Base, User
from fleetops.server import create_app
from fleetops.services import EmailDeliveryError, RoutingClient

OSRM_BODY = {
    "code": "Ok",
    "routes": [
        {
            "distance": 12345.0,
            "duration": 900.0,
            "geometry": {"type": "LineString", "coordinates": [[47.52, -18.91], [47.53, -18.88]]},
        }
    ],
}


def memory_engine(create_schema: bool = True) -> Engine:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    if create_schema:
        Base.metadata.create_all(engine)
    return engine


def file_engine(path: str) -> Engine:
    """SQLite on disk, one connection per thread, for tests that race requests."""
    engine = create_engine(
        f"sqlite+pysqlite:///{path}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    return engine


def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


def make_settings(**overrides: Any) -> Settings:
    values = {
        "database_url": "sqlite+pysqlite:///:memory:",
        "smtp_host": "localhost",
        "mail_from": "noreply@example.com",
        "app_env": "test",
    }
    values.update(overrides)
    return Settings(**values)


def add_account(factory: sessionmaker, email: str, password: str = "Password123", role: str = "user", **fields: Any) -> int:
    with factory() as session:
        user = User(email=email, password_hash=argon2.hash(password), role=role, email_verified=True, **fields)
        session.add(user)
        session.commit()
        return user.id


class RecordingMailer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    def send_verification_code(self, email: str, code: str) -> None:
        self._deliver("verification", email, code)

    def send_password_reset_code(self, email: str, code: str) -> None:
        self._deliver("reset", email, code)

    def last_code(self, kind: str) -> str:
        return [code for sent_kind, _, code in self.sent if sent_kind == kind][-1]

    def _deliver(self, kind: str, email: str, code: str) -> None:
        if self.fail:
            raise EmailDeliveryError("smtp unavailable")
        self.sent.append((kind, email, code))


def routing_client(status_code: int = 200, body: Any = None) -> tuple[RoutingClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if status_code != 200:
            return httpx.Response(status_code, text="upstream error")
        return httpx.Response(200, content=json.dumps(OSRM_BODY if body is None else body))

    client = RoutingClient(
        base_url="https://osrm.test",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _: None,
    )
    return client, seen


def decode(response) -> Any:
    return json.loads(response.get_data(as_text=True))


class AppTestMixin:
    """Builds an app on an in-memory database with recording collaborators."""

    app_env = "test"

    def build_app(self, **settings_overrides: Any) -> None:
        self.engine = memory_engine()
        self.mailer = RecordingMailer()
        self.routing, self.routing_requests = routing_client()
        self.app = create_app(
            settings=make_settings(app_env=self.app_env, **settings_overrides),
            mailer=self.mailer,
            routing_client=self.routing,
            engine=self.engine,
        )
        self.factory = self.app.config["SESSION_FACTORY"]
        self.sessions = self.app.config["SESSION_STORE"]
        self.client = self.app.test_client()

    def dispose(self) -> None:
        self.routing.client.close()
        self.engine.dispose()

    def login(self, email: str, password: str = "Password123", client=None) -> dict[str, Any]:
        response = (client or self.client).post("/users/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.get_data(as_text=True)
        return decode(response)

    def login_as(self, role: str, email: str | None = None, client=None) -> dict[str, str]:
        """Creates an account with ``role``, logs in and returns the CSRF header."""
        address = email or f"{role}@example.com"
        add_account(self.factory, address, role=role)
        body = self.login(address, client=client)
        return {"X-CSRF-Token": body["csrf_token"]}
