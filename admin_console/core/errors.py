"""Error taxonomy for role transitions and invitations."""
from __future__ import annotations
from typing import Optional


class ConsoleError(Exception):
    """Base error with HTTP status and a stable machine-readable code."""

    status = 500
    code = "error"

    def __init__(self, detail: str, *, code: Optional[str] = None):
        self.detail = detail
        if code:
            self.code = code
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.detail}


class PolicyDenied(ConsoleError):
    """Caller lacks the right to perform the transition. Never retried."""

    status = 403
    code = "policy-denied"

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        super().__init__(detail or f"Request denied: {reason}")

    def to_dict(self) -> dict:
        return {"error": self.code, "reason": self.reason, "message": self.detail}


class NotFound(ConsoleError):
    """Target account is missing or inactive."""

    status = 404
    code = "not-found"


class Conflict(ConsoleError):
    """Concurrent modification; the caller should reload and retry."""

    status = 409
    code = "conflict"


class TransitionCancelled(ConsoleError):
    """The caller cancelled before the local commit point."""

    status = 409
    code = "cancelled"


class Unavailable(ConsoleError):
    """The account store cannot be reached; nothing was changed."""

    status = 503
    code = "unavailable"
