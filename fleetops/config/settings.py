"""Environment-backed application settings with strict validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = (
    "DATABASE_URL",
    "SMTP_HOST",
    "MAIL_FROM",
)

APP_ENVS = ("development", "production", "test")


def _read_env_var(name: str, env: Mapping[str, str | None]) -> str:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return str(value)


def _read_int(name: str, env: Mapping[str, str | None], default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer") from exc
    if value < minimum:
        raise RuntimeError(f"Environment variable {name} must be >= {minimum}")
    return value


def _read_bool(name: str, env: Mapping[str, str | None], default: bool) -> bool:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def _read_list(name: str, env: Mapping[str, str | None], default: str) -> tuple[str, ...]:
    raw = str(env.get(name) or "").strip() or default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str
    smtp_host: str
    mail_from: str
    app_env: str = "production"
    cors_allowed_origins: tuple[str, ...] = ("http://localhost:8080",)
    session_timeout_seconds: int = 2700
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_starttls: bool = True
    max_failed_logins: int = 5
    lockout_minutes: int = 15
    routing_base_url: str = "https://router.project-osrm.org"
    routing_timeout_seconds: int = 10
    api_prefix: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def load_settings(env: Mapping[str, str | None] | None = None) -> Settings:
    """Load and validate environment variables into a Settings object."""
    source_env = os.environ if env is None else env

    missing = [key for key in REQUIRED_ENV_VARS if not str(source_env.get(key) or "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    app_env = str(source_env.get("APP_ENV", "production")).strip().lower() or "production"
    if app_env not in APP_ENVS:
        raise RuntimeError(f"APP_ENV must be one of: {', '.join(APP_ENVS)}")

    api_prefix = str(source_env.get("API_PREFIX") or "").strip().rstrip("/")
    if api_prefix and not api_prefix.startswith("/"):
        api_prefix = "/" + api_prefix

    settings = Settings(
        database_url=_read_env_var("DATABASE_URL", source_env),
        smtp_host=_read_env_var("SMTP_HOST", source_env),
        mail_from=_read_env_var("MAIL_FROM", source_env),
        app_env=app_env,
        cors_allowed_origins=_read_list("CORS_ALLOWED_ORIGIN", source_env, "http://localhost:8080"),
        session_timeout_seconds=_read_int("SESSION_TIMEOUT_SECONDS", source_env, 2700, minimum=60),
        smtp_port=_read_int("SMTP_PORT", source_env, 587, minimum=1),
        smtp_user=str(source_env.get("SMTP_USER") or "").strip() or None,
        smtp_password=str(source_env.get("SMTP_PASSWORD") or "") or None,
        smtp_starttls=_read_bool("SMTP_STARTTLS", source_env, True),
        max_failed_logins=_read_int("MAX_FAILED_LOGINS", source_env, 5, minimum=1),
        lockout_minutes=_read_int("LOCKOUT_MINUTES", source_env, 15, minimum=1),
        routing_base_url=str(source_env.get("ROUTING_BASE_URL") or "").strip() or "https://router.project-osrm.org",
        routing_timeout_seconds=_read_int("ROUTING_TIMEOUT_SECONDS", source_env, 10, minimum=1),
        api_prefix=api_prefix,
    )

    logger.info("Loaded application settings for env=%s", settings.app_env)
    return settings
