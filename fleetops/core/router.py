"""Path-based router with ``{name}`` placeholder extraction.

Routes are matched in registration order per method. Literal routes that
share a prefix with a parameterised one (``/users/me`` and ``/users/{id}``)
must be registered first; the router does not rank routes by specificity.

Paths are matched on the raw request URI when the WSGI server provides one
(``RAW_URI`` or ``REQUEST_URI``), so an encoded ``%2F`` stays inside its segment
and reaches the handler decoded.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Pattern
from urllib.parse import unquote, urlsplit

from flask import Request, Response

from .context import RequestContext

logger = logging.getLogger("fleetops.router")

PLACEHOLDER = re.compile(r"^\{([A-Za-z0-9_]+)\}$")
BODYLESS_METHODS = ("GET", "HEAD")
FORM_MIMETYPES = ("application/x-www-form-urlencoded", "multipart/form-data")

Handler = Callable[..., Any]


@dataclass(frozen=True)
class Route:
    method: str
    pattern: str
    regex: Pattern[str]
    param_names: tuple[str, ...]
    handler: Handler

    def match(self, path: str) -> dict[str, str] | None:
        found = self.regex.match(path)
        if found is None:
            return None
        return {name: unescape_segment(value) for name, value in zip(self.param_names, found.groups())}


def normalize_path(path: str) -> str:
    stripped = path.strip("/")
    return "/" + stripped if stripped else "/"


def escape_segment(segment: str) -> str:
    return segment.replace("%", "%25").replace("/", "%2F")


def unescape_segment(segment: str) -> str:
    return segment.replace("%2F", "/").replace("%25", "%")


def request_path(request: Request) -> str:
    """Decoded path of ``request`` that keeps one segment per raw ``/``."""
    raw = request.environ.get("RAW_URI") or request.environ.get("REQUEST_URI")
    if not raw:
        return "/".join(escape_segment(segment) for segment in request.path.split("/"))
    path = raw.split("?", 1)[0].split("#", 1)[0]
    if not path.startswith("/"):
        path = urlsplit(path).path
    root = request.script_root
    if root and path.startswith(root):
        path = path[len(root):]
    path = path.encode("latin1", "replace").decode("utf-8", "replace")
    return "/".join(escape_segment(unquote(segment)) for segment in path.split("/"))


def compile_pattern(pattern: str) -> tuple[Pattern[str], tuple[str, ...]]:
    names: list[str] = []
    parts: list[str] = []
    for segment in pattern.strip("/").split("/"):
        if segment == "":
            continue
        placeholder = PLACEHOLDER.match(segment)
        if placeholder:
            names.append(placeholder.group(1))
            parts.append("([^/]+)")
        else:
            parts.append(re.escape(segment))
    regex = re.compile("^/" + "/".join(parts) + "/?$")
    return regex, tuple(names)


def json_response(payload: Any, status: int = 200, headers: dict[str, str] | None = None) -> Response:
    body = json.dumps(payload, default=str, ensure_ascii=False)
    return Response(body, status=status, mimetype="application/json", headers=headers)


class Router:
    def __init__(self, prefix: str = "") -> None:
        self.prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
        self._routes: dict[str, list[Route]] = {}

    def add(self, method: str, pattern: str, handler: Handler) -> Route:
        verb = method.strip().upper()
        full_pattern = normalize_path(self.prefix + "/" + pattern.strip("/"))
        regex, names = compile_pattern(full_pattern)
        route = Route(verb, full_pattern, regex, names, handler)
        self._routes.setdefault(verb, []).append(route)
        return route

    def get(self, pattern: str, handler: Handler) -> Route:
        return self.add("GET", pattern, handler)

    def post(self, pattern: str, handler: Handler) -> Route:
        return self.add("POST", pattern, handler)

    def put(self, pattern: str, handler: Handler) -> Route:
        return self.add("PUT", pattern, handler)

    def patch(self, pattern: str, handler: Handler) -> Route:
        return self.add("PATCH", pattern, handler)

    def delete(self, pattern: str, handler: Handler) -> Route:
        return self.add("DELETE", pattern, handler)

    def routes(self, method: str | None = None) -> list[Route]:
        if method is not None:
            return list(self._routes.get(method.upper(), []))
        return [route for items in self._routes.values() for route in items]

    def match(self, method: str, path: str) -> tuple[Route, dict[str, str]] | None:
        normalized = normalize_path(path)
        verb = method.upper()
        candidates = self._routes.get(verb, [])
        if verb == "HEAD" and not candidates:
            candidates = self._routes.get("GET", [])
        for route in candidates:
            params = route.match(normalized)
            if params is not None:
                return route, params
        return None

    def allowed_methods(self, path: str) -> list[str]:
        normalized = normalize_path(path)
        allowed = []
        for method, routes in self._routes.items():
            if any(route.match(normalized) is not None for route in routes):
                allowed.append(method)
        return sorted(allowed)

    def dispatch(self, request: Request, context: RequestContext | None = None) -> Any:
        method = request.method.upper()
        path = normalize_path(request_path(request))
        body = None if method in BODYLESS_METHODS else self.read_body(request)

        matched = self.match(method, path)
        if matched is None:
            allowed = self.allowed_methods(path)
            if allowed:
                return json_response(
                    {"ok": False, "message": "Method Not Allowed"},
                    405,
                    headers={"Allow": ", ".join(allowed)},
                )
            return json_response({"ok": False, "message": "Route not found"}, 404)

        route, params = matched
        ctx = context or RequestContext(request=request)
        ctx.params = params
        ctx.body = body
        logger.debug("dispatch %s %s -> %s", method, path, route.pattern)
        return route.handler(ctx, **params)

    def read_body(self, request: Request) -> Any:
        if request.mimetype in FORM_MIMETYPES:
            return request.form.to_dict()
        raw = request.get_data(cache=True)
        if not raw:
            return None
        if request.mimetype == "application/json" or request.mimetype.endswith("+json"):
            try:
                return json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, ValueError):
                logger.debug("undecodable json body on %s %s", request.method, request.path)
                return None
        return None
