"""Invitation of new tenant members with an initial role."""
from __future__ import annotations
import logging
import re
from typing import Optional

from .audit import AuditRecorder
from .errors import Conflict, ConsoleError
from .models import AuditAction, AuditRecord, InvitationResult, NewUserDraft, Outcome, Principal, UserAccount
from .policy import CROSS_TENANT_FORBIDDEN, REASON_MESSAGES, evaluate_invitation
from .roles import Role
from .store import AccountStore, new_account_id

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
EMAIL_MAX_LENGTH = 254
NAME_MAX_LENGTH = 128


def validate_draft(draft: NewUserDraft) -> None:
    """Basic shape checks for an invitation draft.

    Raises:
        ValueError: If the email or display name is malformed
    """
    email = (draft.email or "").strip()
    if not email:
        raise ValueError("email is required")
    if len(email) > EMAIL_MAX_LENGTH or not EMAIL_PATTERN.match(email):
        raise ValueError("email must be a valid address")
    name = (draft.display_name or "").strip()
    if not name:
        raise ValueError("display_name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValueError(f"display_name must be at most {NAME_MAX_LENGTH} characters")


class InvitationComposer:
    """Creates accounts with an initial role and mirrors them to the directory."""

    def __init__(self, store: AccountStore, sync, audit: AuditRecorder):
        self.store = store
        self.sync = sync
        self.audit = audit

    def invite(self, principal: Principal, draft: NewUserDraft, requested_role: Role) -> InvitationResult:
        """Invite a new user.

        Raises:
            ValueError: malformed draft
            Conflict: email already registered in the organization
            Unavailable: account store unreachable
        """
        organization_id = draft.organization_id or principal.organization_id
        target_ref = (draft.email or "").strip().lower()
        try:
            validate_draft(draft)
        except ValueError as exc:
            self._record(principal, target_ref, requested_role, organization_id, Outcome.FAILED, f"invalid-request: {exc}")
            raise

        decision = evaluate_invitation(principal.role, requested_role)
        reason = decision.reason
        if decision and not principal.role.is_system_role and organization_id != principal.organization_id:
            reason = CROSS_TENANT_FORBIDDEN
        if reason:
            logger.info(
                "Invitation denied: %s (%s) inviting %s as %s: %s",
                principal.id, principal.role.value, target_ref, requested_role.value, reason,
            )
            self._record(principal, target_ref, requested_role, organization_id, Outcome.POLICY_DENIED, reason)
            return InvitationResult(Outcome.POLICY_DENIED, reason=reason, message=REASON_MESSAGES.get(reason))

        account = UserAccount(
            id=new_account_id(),
            display_name=draft.display_name.strip(),
            email=draft.email.strip(),
            role=requested_role,
            organization_id=organization_id,
        )
        try:
            if self.store.find_by_email(organization_id, account.email) is not None:
                raise Conflict(f"A user with email '{account.email}' already exists in this organization")
            account = self.store.add(account)
        except ConsoleError as exc:
            self._record(
                principal, target_ref, requested_role, organization_id, Outcome.FAILED, f"{exc.code}: {exc.detail}"
            )
            raise
        logger.info("Invited %s as %s into %s (by %s)", account.id, requested_role.value, organization_id, principal.id)

        result = self.sync.create_mapping(account, requested_role)
        if not result.ok:
            message = f"Directory mapping {result.error_kind} failure after {result.attempts} attempt(s): {result.message}"
            logger.warning("Invitation of %s persisted but directory is lagging: %s", account.id, message)
            self._record(principal, account.id, requested_role, organization_id, Outcome.PARTIALLY_APPLIED, message)
            return InvitationResult(Outcome.PARTIALLY_APPLIED, account=account, message=message)

        try:
            account = self.store.set_external_id(account.id, result.external_id)
        except ConsoleError as exc:
            message = f"Directory mapping {result.external_id} created but not stored: {exc.detail}"
            logger.warning("Invitation of %s: %s", account.id, message)
            self._record(principal, account.id, requested_role, organization_id, Outcome.PARTIALLY_APPLIED, message)
            return InvitationResult(Outcome.PARTIALLY_APPLIED, account=account, message=message)

        self._record(principal, account.id, requested_role, organization_id, Outcome.SUCCEEDED, None)
        return InvitationResult(Outcome.SUCCEEDED, account=account)

    def _record(
        self,
        principal: Principal,
        target: str,
        role: Role,
        organization_id: Optional[str],
        outcome: Outcome,
        message: Optional[str],
    ) -> None:
        self.audit.record(AuditRecord(
            actor_id=principal.id,
            target_user_id=target,
            prior_role=None,
            requested_role=role,
            outcome=outcome,
            message=message,
            action=AuditAction.INVITATION,
            organization_id=organization_id,
        ))
