from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Iterable

from fleetops.core.context import RequestContext
from fleetops.errors import AuthError, AuthorizationError
from fleetops.repositories import Repository

from .roles import Role
from .sessions import Session, SessionStore, compute_fingerprint

CSRF_HEADER = "X-CSRF-Token"

logger = logging.getLogger("fleetops.auth.guard")


class AuthGuard:
    def __init__(self, sessions: SessionStore, accounts: Repository) -> None:
        self.sessions = sessions
        self.accounts = accounts

    def load(self, ctx: RequestContext, session_id: str | None) -> Session | None:
        ctx.session = self.sessions.get(session_id)
        return ctx.session

    def enforce_activity(self, ctx: RequestContext, now: datetime | None = None) -> None:
        """Drop an idle session at request start; the request then runs unauthenticated."""
        session = ctx.session
        if session is None:
            return
        if self.sessions.is_expired(session, now):
            logger.info("session expired account_id=%s", session.account_id)
            self.destroy(ctx)

    def destroy(self, ctx: RequestContext) -> None:
        if ctx.session is not None:
            self.sessions.destroy(ctx.session.id)
        ctx.session = None

    def require_auth(self, ctx: RequestContext, now: datetime | None = None) -> Session:
        moment = now or datetime.now(timezone.utc)
        session = ctx.session
        if session is None:
            raise AuthError("Not authenticated.")

        if self.sessions.is_expired(session, moment):
            self.destroy(ctx)
            raise AuthError("Session expired.")

        if not hmac.compare_digest(session.fingerprint, compute_fingerprint(ctx.user_agent, ctx.client_ip)):
            logger.warning("fingerprint mismatch account_id=%s ip=%s", session.account_id, ctx.client_ip)
            self.destroy(ctx)
            raise AuthError("Session invalid (fingerprint mismatch).")

        account = self.accounts.find(session.account_id)
        if account is None:
            self.destroy(ctx)
            raise AuthError("Account not found. Session closed.")
        if not account.get("is_active", True):
            self.destroy(ctx)
            raise AuthError("Account disabled.")

        refreshed = session.touched(moment)
        self.sessions.save(refreshed)
        ctx.session = refreshed
        return refreshed

    def ensure_authenticated(self, ctx: RequestContext, now: datetime | None = None) -> bool:
        try:
            self.require_auth(ctx, now)
        except AuthError:
            return False
        return True

    def validate_csrf(self, ctx: RequestContext) -> None:
        session = ctx.session
        if session is None:
            return
        supplied = ctx.request.headers.get(CSRF_HEADER) or ""
        if not supplied or not hmac.compare_digest(session.csrf_token.encode("utf-8"), supplied.encode("utf-8")):
            raise AuthorizationError("Missing or invalid CSRF token.")

    def require_role(self, ctx: RequestContext, roles: Iterable[Role | str]) -> Session:
        session = self.require_auth(ctx)
        allowed = {Role(role).value for role in roles}
        if session.role not in allowed:
            raise AuthorizationError("Access denied.")
        return session
