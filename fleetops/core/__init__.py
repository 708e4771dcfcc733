"""Request routing primitives."""

from .context import RequestContext
from .router import Route, Router

__all__ = ["RequestContext", "Route", "Router"]
