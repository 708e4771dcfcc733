from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

from flask import Request

if TYPE_CHECKING:
    from fleetops.auth.sessions import Session


@dataclass
class RequestContext:
    """Everything a handler needs for one request.

    The session is carried explicitly: handlers read and replace
    ``ctx.session`` and the app factory persists whatever is left there once
    the handler returns.
    """

    request: Request
    params: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    session: "Session | None" = None

    @property
    def user_agent(self) -> str:
        return self.request.headers.get("User-Agent") or "unknown"

    @property
    def client_ip(self) -> str:
        return self.request.remote_addr or "0.0.0.0"

    @property
    def is_secure(self) -> bool:
        if self.request.is_secure:
            return True
        return (self.request.headers.get("X-Forwarded-Proto") or "").strip().lower() == "https"

    def json_body(self) -> dict[str, Any]:
        return self.body if isinstance(self.body, dict) else {}

    def query_int(self, name: str, minimum: int = 0) -> int | None:
        raw = self.request.args.get(name)
        if raw is None or raw.strip() == "":
            return None
        try:
            return max(minimum, int(raw))
        except ValueError:
            return None
