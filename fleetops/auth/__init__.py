from .guard import CSRF_HEADER, AuthGuard
from .roles import ADMIN_ROLES, DEFAULT_ROLE, EDITOR_ROLES, Role
from .service import AuthService, role_message
from .sessions import SESSION_COOKIE_NAME, Session, SessionStore, compute_fingerprint

__all__ = [
    "ADMIN_ROLES",
    "AuthGuard",
    "AuthService",
    "CSRF_HEADER",
    "DEFAULT_ROLE",
    "EDITOR_ROLES",
    "Role",
    "SESSION_COOKIE_NAME",
    "Session",
    "SessionStore",
    "compute_fingerprint",
    "role_message",
]
