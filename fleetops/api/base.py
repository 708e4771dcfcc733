from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Iterable

from flask import Response

from fleetops.auth import AuthGuard, Role
from fleetops.core import RequestContext
from fleetops.core.router import json_response
from fleetops.errors import ValidationError


def protected(roles: Iterable[Role] | None = None, csrf: bool = False) -> Callable:
    """Run the auth guard before a controller method.

    ``csrf`` checks the session token header; ``roles`` restricts access to
    the listed roles after authentication.
    """
    allowed = tuple(roles) if roles else ()

    def decorator(fn: Callable) -> Callable:
        @wraps(fn)
        def wrapper(self, ctx: RequestContext, **params: Any) -> Response:
            self.guard.require_auth(ctx)
            if csrf:
                self.guard.validate_csrf(ctx)
            if allowed:
                self.guard.require_role(ctx, allowed)
            return fn(self, ctx, **params)

        return wrapper

    return decorator


def parse_id(raw: Any) -> int:
    try:
        value = int(str(raw))
    except (TypeError, ValueError):
        value = 0
    if value <= 0:
        raise ValidationError("Identifier (id) required.")
    return value


def require_body(ctx: RequestContext) -> dict[str, Any]:
    body = ctx.body
    if not isinstance(body, dict) or not body:
        raise ValidationError("Missing data or invalid JSON body.")
    return dict(body)


class Controller:
    def __init__(self, guard: AuthGuard) -> None:
        self.guard = guard

    def respond(self, payload: Any, status: int = 200) -> Response:
        return json_response(payload, status)
