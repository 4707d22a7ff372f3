"""Console roles and their display metadata."""
from __future__ import annotations
from enum import Enum


class Role(str, Enum):
    """Authorization role held by a console account.

    The value is the wire/storage name. ``rank`` orders roles for display
    only; authorization decisions use the fixed tables in ``core.policy``.
    """

    DEVELOPER = "Developer"
    SUPER_ADMIN = "SuperAdmin"
    ORG_ADMIN = "OrgAdmin"
    USER = "User"

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        """Resolve a role from its value or member name (case-insensitive)."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("role is required")
        candidate = value.strip().replace("-", "").replace("_", "").lower()
        for role in cls:
            if candidate in (role.value.lower(), role.name.replace("_", "").lower()):
                return role
        raise ValueError(f"Unknown role '{value}'")

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def badge_class(self) -> str:
        return _BADGES[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def directory_role_name(self) -> str:
        """App role name mirrored in the identity directory."""
        return _DIRECTORY_ROLE_NAMES[self]

    @property
    def is_system_role(self) -> bool:
        """System roles act across every organization."""
        return self in SYSTEM_ROLES


_RANK = {
    Role.DEVELOPER: 3,
    Role.SUPER_ADMIN: 2,
    Role.ORG_ADMIN: 1,
    Role.USER: 0,
}

_DISPLAY_NAMES = {
    Role.DEVELOPER: "Developer",
    Role.SUPER_ADMIN: "Super Admin",
    Role.ORG_ADMIN: "Organization Admin",
    Role.USER: "User",
}

_BADGES = {
    Role.DEVELOPER: "bg-success",
    Role.SUPER_ADMIN: "bg-danger",
    Role.ORG_ADMIN: "bg-warning",
    Role.USER: "bg-info",
}

_DESCRIPTIONS = {
    Role.DEVELOPER: "Master Developer - Full system access and configuration",
    Role.SUPER_ADMIN: "Super Administrator - Organization management and user administration",
    Role.ORG_ADMIN: "Organization Administrator - Manage organization users and settings",
    Role.USER: "Standard User - Basic organization access",
}

_DIRECTORY_ROLE_NAMES = {
    Role.DEVELOPER: "DevRole",
    Role.SUPER_ADMIN: "SuperAdmin",
    Role.ORG_ADMIN: "OrgAdmin",
    Role.USER: "OrgUser",
}

SYSTEM_ROLES = frozenset({Role.DEVELOPER, Role.SUPER_ADMIN})
ADMIN_ROLES = frozenset({Role.DEVELOPER, Role.SUPER_ADMIN, Role.ORG_ADMIN})


def sorted_by_privilege(roles) -> list[Role]:
    """Return roles highest privilege first (display helper)."""
    return sorted((Role.parse(r) for r in roles), key=lambda r: r.rank, reverse=True)
