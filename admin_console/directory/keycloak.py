"""Keycloak implementation of the directory gateway.

Console roles are mirrored as realm roles named after the app role
(``DevRole``, ``SuperAdmin``, ``OrgAdmin``, ``OrgUser``) and, when group
mirroring is enabled, as membership of one role group per role
(e.g. ``/console-OrgAdmin``). A user holds exactly one console role in the
directory; any other managed role or group is removed on update.
"""
from __future__ import annotations
import logging
import time
from typing import Optional

from admin_console.core.health import HealthReport
from admin_console.core.models import UserAccount
from admin_console.core.roles import Role

from .client import KeycloakClient
from .exceptions import (
    DirectoryAPIError,
    DirectoryError,
    DirectoryRoleNotFoundError,
    DirectoryUnreachableError,
    DirectoryUserNotFoundError,
    InsufficientPermissionsError,
)

logger = logging.getLogger(__name__)

MANAGED_ROLE_NAMES = frozenset(role.directory_role_name for role in Role)


class KeycloakDirectory:
    """Directory gateway backed by the Keycloak Admin REST API."""

    def __init__(
        self,
        client: KeycloakClient,
        realm: str,
        *,
        group_prefix: str = "console-",
        sync_groups: bool = True,
    ):
        self.client = client
        self.realm = realm
        self.group_prefix = group_prefix
        self.sync_groups = sync_groups

    # ─────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────
    def _realm_path(self, suffix: str = "") -> str:
        return f"/admin/realms/{self.realm}{suffix}"

    def role_group_path(self, role: Role) -> str:
        return f"/{self.group_prefix}{role.directory_role_name}"

    def _managed_group_paths(self) -> set[str]:
        return {self.role_group_path(role) for role in Role}

    def _user_call(self, external_id: str, method: str, suffix: str, **kwargs):
        """Call a per-user endpoint, mapping 404 and 403 to typed errors."""
        try:
            return self.client.request(method, self._realm_path(f"/users/{external_id}{suffix}"), **kwargs)
        except DirectoryAPIError as exc:
            if exc.status_code == 404:
                raise DirectoryUserNotFoundError(f"Directory user '{external_id}' not found") from exc
            if exc.status_code == 403:
                raise InsufficientPermissionsError(f"Service account cannot manage '{external_id}': {exc.message}") from exc
            raise

    def _role_representation(self, role: Role) -> dict:
        name = role.directory_role_name
        try:
            rep = self.client.get(self._realm_path(f"/roles/{name}")).json()
        except DirectoryAPIError as exc:
            if exc.status_code == 404:
                raise DirectoryRoleNotFoundError(f"Realm role '{name}' not found in realm '{self.realm}'") from exc
            raise
        return {"id": rep["id"], "name": rep["name"]}

    def get_group_by_path(self, group_path: str) -> Optional[dict]:
        """Retrieve a group by its path (e.g., '/console-OrgAdmin')."""
        resp = self.client.get(self._realm_path("/groups"), params={"search": group_path.strip("/")})
        for group in resp.json() or []:
            if group.get("path") == group_path:
                return group
        return None

    # ─────────────────────────────────────────────────────────────────────
    # Gateway contract
    # ─────────────────────────────────────────────────────────────────────
    def update_role(self, external_id: str, role: Role) -> None:
        target = role.directory_role_name
        mappings = self._user_call(external_id, "GET", "/role-mappings/realm").json() or []

        stale = [
            {"id": m["id"], "name": m["name"]}
            for m in mappings
            if m.get("name") in MANAGED_ROLE_NAMES and m.get("name") != target
        ]
        if stale:
            self._user_call(external_id, "DELETE", "/role-mappings/realm", json=stale)
            logger.info("Removed directory roles %s from %s", [s["name"] for s in stale], external_id)

        if not any(m.get("name") == target for m in mappings):
            self._user_call(external_id, "POST", "/role-mappings/realm", json=[self._role_representation(role)])
            logger.info("Assigned directory role %s to %s", target, external_id)

        if self.sync_groups:
            self._sync_role_group(external_id, role)

    def _sync_role_group(self, external_id: str, role: Role) -> None:
        target_path = self.role_group_path(role)
        managed = self._managed_group_paths()
        current = self._user_call(external_id, "GET", "/groups").json() or []

        for group in current:
            if group.get("path") in managed and group.get("path") != target_path:
                self._user_call(external_id, "DELETE", f"/groups/{group['id']}")
                logger.info("Removed %s from group %s", external_id, group.get("path"))

        if any(group.get("path") == target_path for group in current):
            return

        group = self.get_group_by_path(target_path)
        if not group:
            raise DirectoryRoleNotFoundError(f"Role group '{target_path}' not found in realm '{self.realm}'")
        self._user_call(external_id, "PUT", f"/groups/{group['id']}")
        logger.info("Added %s to group %s", external_id, target_path)

    def find_user_by_email(self, email: str) -> Optional[dict]:
        resp = self.client.get(self._realm_path("/users"), params={"email": email, "exact": "true"})
        for user in resp.json() or []:
            if (user.get("email") or "").lower() == email.lower():
                return user
        return None

    def create_mapping(self, account: UserAccount, role: Role) -> str:
        existing = self.find_user_by_email(account.email)
        if existing:
            external_id = existing["id"]
            logger.info("Adopting existing directory user %s for %s", external_id, account.email)
        else:
            first, _, last = account.display_name.partition(" ")
            payload = {
                "username": account.email.lower(),
                "email": account.email,
                "firstName": first,
                "lastName": last,
                "enabled": True,
                "attributes": {
                    "console_user_id": [account.id],
                    "organization_id": [account.organization_id or ""],
                },
            }
            resp = self.client.post(self._realm_path("/users"), json=payload)
            location = resp.headers.get("Location", "") if resp.headers else ""
            external_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
            if not external_id:
                # Small delay for eventual consistency before looking the user up
                time.sleep(0.3)
                created = self.find_user_by_email(account.email)
                if not created:
                    raise DirectoryError(f"Failed to retrieve directory user '{account.email}' after creation")
                external_id = created["id"]
            logger.info("Created directory user %s for %s", external_id, account.email)

        self.update_role(external_id, role)
        return external_id

    def probe(self) -> HealthReport:
        try:
            self.client.get(self._realm_path())
        except DirectoryUnreachableError as exc:
            return HealthReport.unhealthy(f"Directory unreachable: {exc}")
        except DirectoryAPIError as exc:
            if exc.status_code == 403:
                return HealthReport.degraded("Directory reachable but realm access denied", status_code=403)
            return HealthReport.unhealthy(f"Directory error: {exc}", status_code=exc.status_code)

        missing = []
        for role in Role:
            try:
                self._role_representation(role)
            except DirectoryRoleNotFoundError:
                missing.append(role.directory_role_name)
            except DirectoryAPIError as exc:
                if exc.status_code == 403:
                    return HealthReport.degraded("Directory missing permission: view-realm roles", status_code=403)
                raise
        if missing:
            return HealthReport.degraded(f"Directory missing app roles: {', '.join(missing)}", missing_roles=missing)
        return HealthReport.healthy("Directory fully functional", realm=self.realm)
