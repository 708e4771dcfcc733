"""Process-local session store."""

from __future__ import annotations

import hashlib
import secrets
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

SESSION_COOKIE_NAME = "fleetops_session"


def compute_fingerprint(user_agent: str | None, ip_address: str | None) -> str:
    raw = f"{user_agent or 'unknown'}|{ip_address or '0.0.0.0'}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def generate_session_id() -> str:
    return secrets.token_urlsafe(32)


def generate_csrf_token() -> str:
    return secrets.token_hex(16)


@dataclass(frozen=True)
class Session:
    id: str
    account_id: int
    email: str
    role: str
    created_at: datetime
    last_activity: datetime
    fingerprint: str
    csrf_token: str

    def idle_for(self, now: datetime) -> timedelta:
        return now - self.last_activity

    def touched(self, now: datetime) -> "Session":
        return replace(self, last_activity=now)


class SessionStore:
    def __init__(self, timeout_seconds: int = 2700) -> None:
        self.timeout = timedelta(seconds=timeout_seconds)
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(
        self,
        account_id: int,
        email: str,
        role: str,
        fingerprint: str,
        now: datetime | None = None,
    ) -> Session:
        moment = now or datetime.now(timezone.utc)
        session = Session(
            id=generate_session_id(),
            account_id=account_id,
            email=email,
            role=role,
            created_at=moment,
            last_activity=moment,
            fingerprint=fingerprint,
            csrf_token=generate_csrf_token(),
        )
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def save(self, session: Session) -> None:
        with self._lock:
            if session.id in self._sessions:
                self._sessions[session.id] = session

    def destroy(self, session_id: str | None) -> None:
        if not session_id:
            return
        with self._lock:
            self._sessions.pop(session_id, None)

    def for_account(self, account_id: int) -> list[Session]:
        with self._lock:
            return [value for value in self._sessions.values() if value.account_id == account_id]

    def destroy_for_account(self, account_id: int) -> int:
        with self._lock:
            doomed = [key for key, value in self._sessions.items() if value.account_id == account_id]
            for key in doomed:
                del self._sessions[key]
        return len(doomed)

    def is_expired(self, session: Session, now: datetime | None = None) -> bool:
        moment = now or datetime.now(timezone.utc)
        return session.idle_for(moment) > self.timeout

    def purge_expired(self, now: datetime | None = None) -> int:
        moment = now or datetime.now(timezone.utc)
        with self._lock:
            doomed = [key for key, value in self._sessions.items() if value.idle_for(moment) > self.timeout]
            for key in doomed:
                del self._sessions[key]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
