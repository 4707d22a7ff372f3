"""Contract between the role engine and the external identity directory.

The orchestrator and invitation composer never talk to a directory
transport directly; they go through ``DirectorySyncAdapter`` (see
``sync.py``), which wraps any object implementing ``DirectoryGateway``.
"""
from __future__ import annotations
import threading
import uuid
from typing import Optional, Protocol

from admin_console.core.health import HealthReport
from admin_console.core.models import UserAccount
from admin_console.core.roles import Role

from .exceptions import DirectoryUserNotFoundError


class DirectoryGateway(Protocol):
    """Operations the console needs from the identity directory."""

    def update_role(self, external_id: str, role: Role) -> None:
        """Make ``role`` the only console role held by the directory account."""
        ...

    def create_mapping(self, account: UserAccount, role: Role) -> str:
        """Create (or adopt) the directory account for ``account`` with ``role``.

        Returns:
            The directory identifier to store on the account.
        """
        ...

    def probe(self) -> HealthReport: ...


class InMemoryDirectory:
    """Directory double used in demo mode and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.roles: dict[str, Role] = {}
        self.emails: dict[str, str] = {}

    def update_role(self, external_id: str, role: Role) -> None:
        with self._lock:
            if external_id not in self.roles:
                raise DirectoryUserNotFoundError(f"Directory user '{external_id}' not found")
            self.roles[external_id] = role

    def create_mapping(self, account: UserAccount, role: Role) -> str:
        email = account.email.strip().lower()
        with self._lock:
            external_id = self.emails.get(email)
            if external_id is None:
                external_id = str(uuid.uuid4())
                self.emails[email] = external_id
            self.roles[external_id] = role
            return external_id

    def role_of(self, external_id: str) -> Optional[Role]:
        with self._lock:
            return self.roles.get(external_id)

    def probe(self) -> HealthReport:
        return HealthReport.healthy("In-memory directory", accounts=len(self.roles))
