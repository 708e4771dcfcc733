from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from fleetops.models import SecurityLog

SENSITIVE_ROLES = ("admin", "superadmin")


class AuditLogger:
    """Persists security events and mirrors them as JSON log lines.

    Each event is written in its own session so that a failed audit write can
    never roll back the caller's transaction.
    """

    def __init__(self, session_factory: sessionmaker, logger: logging.Logger | None = None) -> None:
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger("fleetops.audit")

    def record(
        self,
        action: str,
        email: str | None = None,
        role: str | None = None,
        ip: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> SecurityLog | None:
        entry = SecurityLog(
            action=action,
            email=email,
            role=role,
            ip=ip,
            payload=dict(payload) if payload else {},
        )
        session = self.session_factory()
        try:
            session.add(entry)
            session.commit()
            session.refresh(entry)
        except SQLAlchemyError:
            session.rollback()
            self.logger.exception("failed to persist security event action=%s", action)
            return None
        finally:
            session.close()
        self._log_entry(entry)
        return entry

    def record_role_event(
        self,
        action: str,
        email: str,
        role: str,
        ip: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> SecurityLog | None:
        if role not in SENSITIVE_ROLES:
            return None
        return self.record(action, email=email, role=role, ip=ip, payload=payload)

    def _log_entry(self, entry: SecurityLog) -> None:
        payload = {"category": "security"}
        for column in entry.__table__.columns:
            payload[column.name] = getattr(entry, column.name)
        self.logger.info(json.dumps(payload, default=str))
