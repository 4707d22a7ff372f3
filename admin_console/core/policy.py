"""Role assignment policy.

Pure functions deciding whether a caller may move a target account to a
requested role. The rules are a fixed table, evaluated in order, first
match wins:

1. self-modification is always denied
2. only Developers may grant Developer or SuperAdmin
3. callers outside the allowed-assignment table are denied
4. requesting the current role is a no-op and denied (role changes only)
5. otherwise allowed

Invitations use the same evaluator with ``Intent.INVITE``: OrgAdmins may
invite ``User`` accounts only and there is no current role to compare.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .roles import Role

SELF_MODIFICATION_FORBIDDEN = "self-modification-forbidden"
ROLE_NOT_ASSIGNABLE_BY_CALLER = "role-not-assignable-by-caller"
INSUFFICIENT_PRIVILEGE = "insufficient-privilege"
NO_OP_TRANSITION = "no-op-transition"
CROSS_TENANT_FORBIDDEN = "cross-tenant-forbidden"

REASON_MESSAGES = {
    SELF_MODIFICATION_FORBIDDEN: "You cannot change your own role.",
    ROLE_NOT_ASSIGNABLE_BY_CALLER: "Only Developers may grant the Developer or SuperAdmin role.",
    INSUFFICIENT_PRIVILEGE: "Your role does not allow this operation.",
    NO_OP_TRANSITION: "The user already holds the requested role.",
    CROSS_TENANT_FORBIDDEN: "You can only manage users of your own organization.",
}

PRIVILEGED_GRANTS = frozenset({Role.DEVELOPER, Role.SUPER_ADMIN})


class Intent(str, Enum):
    CHANGE = "change"
    INVITE = "invite"


# Roles each caller role may assign to an existing account.
ASSIGNABLE_ROLES: dict[Role, frozenset[Role]] = {
    Role.DEVELOPER: frozenset(Role),
    Role.SUPER_ADMIN: frozenset({Role.ORG_ADMIN, Role.USER}),
    Role.ORG_ADMIN: frozenset(),
    # Role management is a system-staff page; plain members never reach the no-op check.
    Role.USER: frozenset(),
}

# Roles each caller role may give a newly invited account.
INVITABLE_ROLES: dict[Role, frozenset[Role]] = {
    Role.DEVELOPER: frozenset(Role),
    Role.SUPER_ADMIN: frozenset({Role.ORG_ADMIN, Role.USER}),
    Role.ORG_ADMIN: frozenset({Role.USER}),
    Role.USER: frozenset(),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return REASON_MESSAGES.get(self.reason) if self.reason else None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def evaluate(
    principal_role: Role,
    target_current_role: Role,
    requested_role: Role,
    is_self: bool,
    intent: Intent = Intent.CHANGE,
) -> Decision:
    """Decide a role transition. Total, deterministic, no I/O."""
    if is_self:
        return deny(SELF_MODIFICATION_FORBIDDEN)

    if requested_role in PRIVILEGED_GRANTS and principal_role is not Role.DEVELOPER:
        return deny(ROLE_NOT_ASSIGNABLE_BY_CALLER)

    table = INVITABLE_ROLES if intent is Intent.INVITE else ASSIGNABLE_ROLES
    if requested_role not in table[principal_role]:
        return deny(INSUFFICIENT_PRIVILEGE)

    if intent is Intent.CHANGE and requested_role is target_current_role:
        return deny(NO_OP_TRANSITION)

    return ALLOW


def evaluate_invitation(principal_role: Role, requested_role: Role) -> Decision:
    """Initial-role check for invitations (baseline ``User``, never self)."""
    return evaluate(principal_role, Role.USER, requested_role, False, intent=Intent.INVITE)


def assignable_roles(principal_role: Role, intent: Intent = Intent.CHANGE) -> list[Role]:
    """Roles a caller may pick from, highest privilege first (UI helper)."""
    table = INVITABLE_ROLES if intent is Intent.INVITE else ASSIGNABLE_ROLES
    return sorted(table[principal_role], key=lambda r: r.rank, reverse=True)
