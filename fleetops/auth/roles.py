from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    MANAGER = "manager"
    OPERATOR = "operator"
    VIEWER = "viewer"
    USER = "user"

    @property
    def rank(self) -> int:
        return len(ROLE_ORDER) - ROLE_ORDER.index(self)

    def at_least(self, other: "Role | str") -> bool:
        return self.rank >= Role(other).rank

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return tuple(role.value for role in ROLE_ORDER)


ROLE_ORDER = (
    Role.SUPERADMIN,
    Role.ADMIN,
    Role.MANAGER,
    Role.OPERATOR,
    Role.VIEWER,
    Role.USER,
)

ADMIN_ROLES = (Role.SUPERADMIN, Role.ADMIN)
EDITOR_ROLES = (Role.SUPERADMIN, Role.ADMIN, Role.MANAGER, Role.OPERATOR)
DEFAULT_ROLE = Role.USER
