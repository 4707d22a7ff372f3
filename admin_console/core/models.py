"""Value objects shared by the role management engine."""
from __future__ import annotations
import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from .roles import Role


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Outcome(str, Enum):
    """Outcome of a role transition or invitation attempt."""

    SUCCEEDED = "succeeded"
    POLICY_DENIED = "policy-denied"
    PARTIALLY_APPLIED = "partially-applied"
    FAILED = "failed"


class AuditAction(str, Enum):
    ROLE_CHANGE = "role-change"
    INVITATION = "invitation"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, as established by the authentication layer."""

    id: str
    role: Role
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class UserAccount:
    """Tenant member as stored in the console database.

    ``version`` is the optimistic concurrency token; the store bumps it on
    every write. Accounts are deactivated, never deleted.
    """

    id: str
    display_name: str
    email: str
    role: Role
    organization_id: Optional[str] = None
    active: bool = True
    external_id: Optional[str] = None
    version: int = 1
    created_at: datetime.datetime = field(default_factory=utcnow)
    modified_at: datetime.datetime = field(default_factory=utcnow)

    @property
    def directory_lagging(self) -> bool:
        return self.active and not self.external_id

    def with_changes(self, **changes: Any) -> "UserAccount":
        return replace(self, **changes)


@dataclass(frozen=True)
class NewUserDraft:
    display_name: str
    email: str
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class RoleTransitionRequest:
    principal: Principal
    target_user_id: str
    requested_role: Role
    reason: Optional[str] = None

    @property
    def is_self(self) -> bool:
        return self.principal.id == self.target_user_id


@dataclass(frozen=True)
class AuditRecord:
    """One immutable entry of the role audit trail."""

    actor_id: str
    target_user_id: str
    prior_role: Optional[Role]
    requested_role: Role
    outcome: Outcome
    message: Optional[str] = None
    action: AuditAction = AuditAction.ROLE_CHANGE
    organization_id: Optional[str] = None
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "actor_id": self.actor_id,
            "target_user_id": self.target_user_id,
            "organization_id": self.organization_id,
            "prior_role": self.prior_role.value if self.prior_role else None,
            "requested_role": self.requested_role.value,
            "outcome": self.outcome.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditRecord":
        prior = data.get("prior_role")
        return cls(
            actor_id=data["actor_id"],
            target_user_id=data["target_user_id"],
            prior_role=Role(prior) if prior else None,
            requested_role=Role(data["requested_role"]),
            outcome=Outcome(data["outcome"]),
            message=data.get("message"),
            action=AuditAction(data.get("action", AuditAction.ROLE_CHANGE.value)),
            organization_id=data.get("organization_id"),
            timestamp=datetime.datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class TransitionResult:
    outcome: Outcome
    new_role: Optional[Role] = None
    previous_role: Optional[Role] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    @property
    def role_changed(self) -> bool:
        return self.outcome in (Outcome.SUCCEEDED, Outcome.PARTIALLY_APPLIED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "role": self.new_role.value if self.new_role else None,
            "previous_role": self.previous_role.value if self.previous_role else None,
            "reason": self.reason,
            "message": self.message,
        }


@dataclass(frozen=True)
class InvitationResult:
    outcome: Outcome
    account: Optional[UserAccount] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        account = self.account
        return {
            "outcome": self.outcome.value,
            "reason": self.reason,
            "message": self.message,
            "user": None if account is None else {
                "id": account.id,
                "display_name": account.display_name,
                "email": account.email,
                "role": account.role.value,
                "organization_id": account.organization_id,
                "external_id": account.external_id,
            },
        }
