"""Role transition orchestration.

Sequence for one request:

    load account ──> policy ──> (cancellation checkpoint) ──> CAS role write
                                                                  │
                        audit <── directory sync (retried) <──────┘

The console database is authoritative: once the role write commits, the
change is never rolled back. A directory failure after the commit yields
``partially-applied`` and leaves the account lagging in the directory
until an operator re-drives the sync. After each successful push the stored
role is re-read; if a newer commit moved it, that role is pushed instead so
out-of-order syncs converge on the database.

Exactly one audit record is written per call, whatever the outcome.
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .audit import AuditRecorder
from .errors import ConsoleError, NotFound, TransitionCancelled
from .models import (
    AuditAction,
    AuditRecord,
    Outcome,
    Principal,
    RoleTransitionRequest,
    TransitionResult,
    UserAccount,
)
from .policy import evaluate
from .roles import Role
from .store import AccountStore

logger = logging.getLogger(__name__)

# Re-syncs allowed when newer commits race the directory push.
MAX_CATCH_UP_SYNCS = 3


class CancellationToken:
    """Cancellation that only takes effect before the local commit point."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled = False
        self._committed = False

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> bool:
        """Request cancellation. Returns False once the commit has started."""
        with self._lock:
            if self._committed:
                return False
            self._cancelled = True
            return True

    def enter_commit(self) -> bool:
        """Claim the commit point. Returns False if already cancelled."""
        with self._lock:
            if self._cancelled:
                return False
            self._committed = True
            return True


class PendingTransition:
    """Handle to a transition running on the orchestrator's worker pool."""

    def __init__(self, future: "Future[TransitionResult]", token: CancellationToken):
        self._future = future
        self._token = token

    def cancel(self) -> bool:
        """Returns False once the transition has finished or committed."""
        if self._future.done():
            return False
        return self._token.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> TransitionResult:
        return self._future.result(timeout)


class RoleTransitionOrchestrator:
    """Applies role transitions against the store and the directory."""

    def __init__(self, store: AccountStore, sync, audit: AuditRecorder, *, max_workers: int = 4):
        self.store = store
        self.sync = sync
        self.audit = audit
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────────
    # Entry points
    # ─────────────────────────────────────────────────────────────────────
    def promote_to_admin(
        self, principal: Principal, user_id: str, role: Role = Role.ORG_ADMIN, reason: Optional[str] = None
    ) -> TransitionResult:
        return self.apply(RoleTransitionRequest(principal, user_id, role, reason))

    def revoke_admin(self, principal: Principal, user_id: str, reason: Optional[str] = None) -> TransitionResult:
        return self.apply(RoleTransitionRequest(principal, user_id, Role.USER, reason))

    def submit(self, request: RoleTransitionRequest) -> PendingTransition:
        """Run ``apply`` on a worker thread; cancellable until the commit."""
        token = CancellationToken()
        future = self._pool().submit(self.apply, request, token)
        return PendingTransition(future, token)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="role-transition"
                )
            return self._executor

    # ─────────────────────────────────────────────────────────────────────
    # Core algorithm
    # ─────────────────────────────────────────────────────────────────────
    def apply(self, request: RoleTransitionRequest, cancel: Optional[CancellationToken] = None) -> TransitionResult:
        """Apply a role transition.

        Returns:
            TransitionResult with outcome succeeded, partially-applied or
            policy-denied.

        Raises:
            NotFound: target missing or inactive
            Conflict: target changed since it was loaded
            Unavailable: account store unreachable (nothing changed)
            TransitionCancelled: cancelled before the commit point
        """
        principal = request.principal
        account = self._load(request)
        prior = account.role
        is_self = request.is_self or principal.id == account.external_id

        decision = evaluate(principal.role, prior, request.requested_role, is_self)
        if not decision:
            logger.info(
                "Role change denied: %s (%s) -> %s for %s: %s",
                principal.id, principal.role.value, request.requested_role.value, account.id, decision.reason,
            )
            self._record(request, account, Outcome.POLICY_DENIED, decision.reason)
            return TransitionResult(
                Outcome.POLICY_DENIED,
                new_role=prior,
                previous_role=prior,
                reason=decision.reason,
                message=decision.message,
            )

        if cancel is not None and not cancel.enter_commit():
            self._record(request, account, Outcome.FAILED, "cancelled before commit")
            raise TransitionCancelled(f"Role change for '{account.id}' was cancelled")

        try:
            committed = self.store.compare_and_set_role(account.id, prior, account.version, request.requested_role)
        except ConsoleError as exc:
            self._record(request, account, Outcome.FAILED, f"{exc.code}: {exc.detail}")
            raise
        logger.info(
            "Role of %s committed locally: %s -> %s (by %s)",
            account.id, prior.value, committed.role.value, principal.id,
        )

        # Past the commit point: never report plain failure from here on.
        return self._sync_and_record(request, committed, prior)

    def _load(self, request: RoleTransitionRequest) -> UserAccount:
        try:
            account = self.store.get(request.target_user_id)
        except ConsoleError as exc:
            self._record(request, None, Outcome.FAILED, f"{exc.code}: {exc.detail}")
            raise
        if account is None or not account.active:
            state = "missing" if account is None else "inactive"
            self._record(request, account, Outcome.FAILED, f"not-found: target {state}")
            raise NotFound(f"User '{request.target_user_id}' not found or inactive")
        return account

    def _sync_and_record(self, request: RoleTransitionRequest, committed: UserAccount, prior: Role) -> TransitionResult:
        target = committed
        for _ in range(MAX_CATCH_UP_SYNCS + 1):
            try:
                result = self.sync.sync_role(target, target.role)
            except Exception as exc:
                logger.error("Directory sync raised for %s: %s", committed.id, exc, exc_info=True)
                return self._partial(request, committed, prior, f"Directory sync error: {exc}")

            if not result.ok:
                message = f"Directory sync {result.error_kind} failure after {result.attempts} attempt(s): {result.message}"
                return self._partial(request, committed, prior, message)

            if result.external_id and result.external_id != target.external_id:
                try:
                    target = self.store.set_external_id(committed.id, result.external_id)
                except ConsoleError as exc:
                    logger.warning("Could not store directory id for %s: %s", committed.id, exc)
                    return self._partial(
                        request, committed, prior,
                        f"Directory mapping {result.external_id} created but not stored: {exc.detail}",
                    )

            # A later commit may have synced before this push landed.
            try:
                current = self.store.get(committed.id)
            except ConsoleError as exc:
                return self._partial(
                    request, committed, prior,
                    f"Directory set to {target.role.value} but the stored role could not be re-read: {exc.detail}",
                )
            if current is None or current.role is target.role:
                break
            logger.info(
                "Role of %s moved to %s while %s was being synced; re-syncing",
                committed.id, current.role.value, target.role.value,
            )
            target = current
        else:
            return self._partial(
                request, committed, prior,
                f"Directory did not settle after {MAX_CATCH_UP_SYNCS} catch-up syncs (last pushed {target.role.value})",
            )

        message = None
        if target.role is not committed.role:
            message = f"Superseded by a later change; directory holds {target.role.value}"
        self._record(request, committed, Outcome.SUCCEEDED, message, prior=prior)
        return TransitionResult(Outcome.SUCCEEDED, new_role=committed.role, previous_role=prior, message=message)

    def _partial(self, request, committed: UserAccount, prior: Role, message: str) -> TransitionResult:
        logger.warning(
            "Role of %s changed to %s but directory is lagging: %s", committed.id, committed.role.value, message
        )
        self._record(request, committed, Outcome.PARTIALLY_APPLIED, message, prior=prior)
        return TransitionResult(
            Outcome.PARTIALLY_APPLIED, new_role=committed.role, previous_role=prior, message=message
        )

    def _record(
        self,
        request: RoleTransitionRequest,
        account: Optional[UserAccount],
        outcome: Outcome,
        message: Optional[str],
        *,
        prior: Optional[Role] = None,
    ) -> None:
        if prior is None and account is not None:
            prior = account.role
        message = message if not request.reason else f"{message or ''} | reason: {request.reason}".lstrip(" |")
        self.audit.record(AuditRecord(
            actor_id=request.principal.id,
            target_user_id=request.target_user_id,
            prior_role=prior,
            requested_role=request.requested_role,
            outcome=outcome,
            message=message,
            action=AuditAction.ROLE_CHANGE,
            organization_id=account.organization_id if account else None,
        ))
