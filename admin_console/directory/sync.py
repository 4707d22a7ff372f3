"""Directory sync adapter with bounded retries.

Transient failures (timeouts, connection errors, throttling, 5xx) are
retried with exponential backoff and full jitter; permanent failures
(permission denied, account not found, bad request) are surfaced on the
first attempt. The adapter never raises: callers get a ``SyncResult``.

The adapter holds no store lock while it sleeps between attempts, so a
slow directory only delays the calling unit of work.
"""
from __future__ import annotations
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from admin_console.core.models import UserAccount
from admin_console.core.roles import Role

from .exceptions import DirectoryAPIError, DirectoryError, is_transient
from .gateway import DirectoryGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    external_id: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    attempts: int = 0


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def delay_for(self, attempt: int, rng: Callable[[float, float], float] = random.uniform) -> float:
        """Full-jitter exponential backoff for the retry after ``attempt``."""
        ceiling = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return rng(0, ceiling)


class DirectorySyncAdapter:
    """Pushes console roles to the identity directory."""

    def __init__(
        self,
        gateway: DirectoryGateway,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ):
        self.gateway = gateway
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    def sync_role(self, account: UserAccount, role: Role) -> SyncResult:
        """Mirror ``role`` for ``account``; unmapped accounts get a new mapping."""
        if account.external_id is None:
            return self.create_mapping(account, role)
        external_id = account.external_id
        return self._run(
            f"update role of {external_id} to {role.value}",
            lambda: self.gateway.update_role(external_id, role),
            returns_external_id=False,
        )

    def create_mapping(self, account: UserAccount, role: Role) -> SyncResult:
        return self._run(
            f"create directory mapping for {account.email} as {role.value}",
            lambda: self.gateway.create_mapping(account, role),
            returns_external_id=True,
        )

    def _run(self, label: str, operation: Callable[[], T], *, returns_external_id: bool) -> SyncResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                value = operation()
            except DirectoryError as exc:
                if not is_transient(exc):
                    logger.warning("Directory sync failed permanently (%s): %s", label, exc)
                    return SyncResult(False, error_kind="permanent", message=str(exc), attempts=attempt)
                if attempt >= self.policy.max_attempts:
                    logger.error("Directory sync gave up after %d attempts (%s): %s", attempt, label, exc)
                    return SyncResult(False, error_kind="transient", message=str(exc), attempts=attempt)
                delay = self._delay(attempt, exc)
                logger.warning(
                    "Directory sync retry attempt %d after %.0fms (%s): %s",
                    attempt + 1, delay * 1000, label, exc,
                )
                self._sleep(delay)
                continue
            except Exception as exc:
                logger.error("Unexpected directory sync error (%s): %s", label, exc, exc_info=True)
                return SyncResult(False, error_kind="permanent", message=str(exc), attempts=attempt)

            logger.info("Directory sync succeeded (%s) after %d attempt(s)", label, attempt)
            return SyncResult(True, external_id=value if returns_external_id else None, attempts=attempt)

    def _delay(self, attempt: int, exc: DirectoryError) -> float:
        if isinstance(exc, DirectoryAPIError) and exc.retry_after is not None:
            return min(exc.retry_after, self.policy.max_delay)
        return self.policy.delay_for(attempt, self._rng)
