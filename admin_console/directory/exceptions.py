"""Identity directory exceptions, classified as transient or permanent."""
from __future__ import annotations
from typing import Optional

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class DirectoryError(Exception):
    """Base exception for all directory operations."""

    transient = False

    @property
    def kind(self) -> str:
        return "transient" if self.transient else "permanent"


class DirectoryAPIError(DirectoryError):
    """HTTP error from the directory admin API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
        retry_after: Seconds requested by a throttling response, if any
    """

    def __init__(self, status_code: int, message: str, endpoint: str, retry_after: Optional[float] = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        self.retry_after = retry_after
        super().__init__(f"[{status_code}] {endpoint}: {message}")

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.status_code in TRANSIENT_STATUS_CODES


class DirectoryUnreachableError(DirectoryError):
    """Timeout or connection failure talking to the directory."""

    transient = True


class DirectoryUserNotFoundError(DirectoryError):
    """Mapped account does not exist in the directory."""


class DirectoryRoleNotFoundError(DirectoryError):
    """App role or role group is not provisioned in the directory."""


class InsufficientPermissionsError(DirectoryError):
    """Service account lacks required directory permissions."""


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, DirectoryError) and exc.transient
