"""Tests for the Keycloak directory gateway and its HTTP client."""
from unittest.mock import Mock

import pytest
import requests

from admin_console.core.health import HealthStatus
from admin_console.core.roles import Role
from admin_console.directory import client as client_module
from admin_console.directory.client import KeycloakClient
from admin_console.directory.exceptions import (
    DirectoryAPIError,
    DirectoryRoleNotFoundError,
    DirectoryUnreachableError,
    DirectoryUserNotFoundError,
    InsufficientPermissionsError,
)
from admin_console.directory.keycloak import KeycloakDirectory
from tests.conftest import make_account

REALM = "/admin/realms/demo"


def _resp(payload=None, status_code=200, headers=None):
    resp = Mock()
    resp.status_code = status_code
    resp.json.return_value = payload
    resp.headers = headers or {}
    return resp


class FakeKeycloak:
    """Routes ``KeycloakClient.request`` calls to canned responses."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def request(self, method, path, **kwargs):
        self.calls.append((method, path, kwargs.get("json")))
        handler = self.routes.get((method, path))
        if handler is None:
            return _resp([])
        if isinstance(handler, Exception):
            raise handler
        return handler

    def get(self, path, params=None, **kwargs):
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path, json=None, **kwargs):
        return self.request("POST", path, json=json, **kwargs)


def _role_rep(name):
    return _resp({"id": f"id-{name}", "name": name})


def _directory(routes, **kwargs):
    return KeycloakDirectory(FakeKeycloak(routes), "demo", **kwargs)


# ─────────────────────────────────────────────────────────────────────────────
# update_role
# ─────────────────────────────────────────────────────────────────────────────
def test_update_role_replaces_managed_roles_only():
    routes = {
        ("GET", f"{REALM}/users/kc-1/role-mappings/realm"): _resp([
            {"id": "id-OrgUser", "name": "OrgUser"},
            {"id": "id-offline", "name": "offline_access"},
        ]),
        ("GET", f"{REALM}/roles/OrgAdmin"): _role_rep("OrgAdmin"),
    }
    directory = _directory(routes, sync_groups=False)

    directory.update_role("kc-1", Role.ORG_ADMIN)

    calls = directory.client.calls
    assert ("DELETE", f"{REALM}/users/kc-1/role-mappings/realm", [{"id": "id-OrgUser", "name": "OrgUser"}]) in calls
    assert ("POST", f"{REALM}/users/kc-1/role-mappings/realm", [{"id": "id-OrgAdmin", "name": "OrgAdmin"}]) in calls


def test_update_role_is_idempotent():
    routes = {
        ("GET", f"{REALM}/users/kc-1/role-mappings/realm"): _resp([{"id": "id-OrgAdmin", "name": "OrgAdmin"}]),
        ("GET", f"{REALM}/users/kc-1/groups"): _resp([{"id": "g-2", "path": "/console-OrgAdmin"}]),
    }
    directory = _directory(routes)

    directory.update_role("kc-1", Role.ORG_ADMIN)

    assert [c[0] for c in directory.client.calls] == ["GET", "GET"]


def test_update_role_moves_role_group():
    routes = {
        ("GET", f"{REALM}/users/kc-1/role-mappings/realm"): _resp([{"id": "id-DevRole", "name": "DevRole"}]),
        ("GET", f"{REALM}/users/kc-1/groups"): _resp([
            {"id": "g-1", "path": "/console-OrgUser"},
            {"id": "g-9", "path": "/engineering"},
        ]),
        ("GET", f"{REALM}/groups"): _resp([{"id": "g-dev", "path": "/console-DevRole"}]),
    }
    directory = _directory(routes)

    directory.update_role("kc-1", Role.DEVELOPER)

    calls = directory.client.calls
    assert ("DELETE", f"{REALM}/users/kc-1/groups/g-1", None) in calls
    assert ("PUT", f"{REALM}/users/kc-1/groups/g-dev", None) in calls
    assert not any(path.endswith("/groups/g-9") for _, path, _ in calls)


def test_update_role_missing_group_is_permanent():
    routes = {
        ("GET", f"{REALM}/users/kc-1/role-mappings/realm"): _resp([{"id": "id-OrgUser", "name": "OrgUser"}]),
    }
    with pytest.raises(DirectoryRoleNotFoundError) as exc_info:
        _directory(routes).update_role("kc-1", Role.USER)
    assert not exc_info.value.transient


@pytest.mark.parametrize(
    "status,error_type",
    [(404, DirectoryUserNotFoundError), (403, InsufficientPermissionsError), (503, DirectoryAPIError)],
)
def test_update_role_maps_http_errors(status, error_type):
    routes = {
        ("GET", f"{REALM}/users/kc-1/role-mappings/realm"): DirectoryAPIError(status, "err", "/x"),
    }
    with pytest.raises(error_type):
        _directory(routes).update_role("kc-1", Role.USER)


def test_missing_realm_role_raises_role_not_found():
    routes = {
        ("GET", f"{REALM}/users/kc-1/role-mappings/realm"): _resp([]),
        ("GET", f"{REALM}/roles/OrgAdmin"): DirectoryAPIError(404, "not found", "/x"),
    }
    with pytest.raises(DirectoryRoleNotFoundError):
        _directory(routes, sync_groups=False).update_role("kc-1", Role.ORG_ADMIN)


# ─────────────────────────────────────────────────────────────────────────────
# create_mapping
# ─────────────────────────────────────────────────────────────────────────────
def test_create_mapping_creates_user_and_reads_location():
    routes = {
        ("POST", f"{REALM}/users"): _resp(None, 201, {"Location": f"http://kc{REALM}/users/kc-new"}),
        ("GET", f"{REALM}/roles/OrgUser"): _role_rep("OrgUser"),
    }
    directory = _directory(routes, sync_groups=False)
    account = make_account("u-7", display_name="Jane Q Doe", external_id=None)

    external_id = directory.create_mapping(account, Role.USER)

    assert external_id == "kc-new"
    posted = next(body for method, path, body in directory.client.calls if (method, path) == ("POST", f"{REALM}/users"))
    assert posted["username"] == "u-7@acme.test"
    assert posted["firstName"] == "Jane"
    assert posted["lastName"] == "Q Doe"
    assert posted["attributes"]["console_user_id"] == ["u-7"]


def test_create_mapping_adopts_existing_directory_user():
    routes = {
        ("GET", f"{REALM}/users"): _resp([{"id": "kc-existing", "email": "U-7@acme.test"}]),
        ("GET", f"{REALM}/roles/OrgUser"): _role_rep("OrgUser"),
    }
    directory = _directory(routes, sync_groups=False)

    external_id = directory.create_mapping(make_account("u-7", external_id=None), Role.USER)

    assert external_id == "kc-existing"
    assert not any(m == "POST" and p == f"{REALM}/users" for m, p, _ in directory.client.calls)


# ─────────────────────────────────────────────────────────────────────────────
# probe
# ─────────────────────────────────────────────────────────────────────────────
def test_probe_healthy():
    routes = {("GET", REALM): _resp({"realm": "demo"})}
    routes.update({("GET", f"{REALM}/roles/{r.directory_role_name}"): _role_rep(r.directory_role_name) for r in Role})
    report = _directory(routes).probe()
    assert report.status is HealthStatus.HEALTHY


def test_probe_degraded_when_roles_missing():
    routes = {("GET", REALM): _resp({"realm": "demo"})}
    routes.update({("GET", f"{REALM}/roles/{r.directory_role_name}"): DirectoryAPIError(404, "x", "/x") for r in Role})
    report = _directory(routes).probe()
    assert report.status is HealthStatus.DEGRADED
    assert report.data["missing_roles"] == ["DevRole", "SuperAdmin", "OrgAdmin", "OrgUser"]


def test_probe_degraded_on_forbidden_and_unhealthy_when_unreachable():
    forbidden = _directory({("GET", REALM): DirectoryAPIError(403, "forbidden", REALM)}).probe()
    assert forbidden.status is HealthStatus.DEGRADED

    down = _directory({("GET", REALM): DirectoryUnreachableError("connection refused")}).probe()
    assert down.status is HealthStatus.UNHEALTHY


# ─────────────────────────────────────────────────────────────────────────────
# KeycloakClient
# ─────────────────────────────────────────────────────────────────────────────
def test_client_fetches_token_lazily_and_reuses_it(monkeypatch):
    token_calls = []

    def fake_post(url, data=None, timeout=None):
        token_calls.append(url)
        return _resp({"access_token": "svc-token", "expires_in": 300})

    seen_headers = []

    def fake_request(method, url, headers=None, timeout=None, **kwargs):
        seen_headers.append(headers)
        return _resp({"realm": "demo"})

    monkeypatch.setattr(client_module.requests, "post", fake_post)
    monkeypatch.setattr(client_module.requests, "request", fake_request)

    client = KeycloakClient("http://kc:8080/")
    client.use_service_account("demo", "automation-cli", "secret")
    assert token_calls == []

    client.get("/admin/realms/demo")
    client.get("/admin/realms/demo")

    assert token_calls == ["http://kc:8080/realms/demo/protocol/openid-connect/token"]
    assert seen_headers[0]["Authorization"] == "Bearer svc-token"


def test_client_maps_http_errors_with_retry_after(monkeypatch):
    monkeypatch.setattr(
        client_module.requests, "post", lambda *a, **kw: _resp({"access_token": "t", "expires_in": 300})
    )
    throttled = _resp(None, 429, {"Retry-After": "7"})
    throttled.text = "slow down"
    throttled.url = "http://kc/admin/realms/demo/users"
    monkeypatch.setattr(client_module.requests, "request", lambda *a, **kw: throttled)

    client = KeycloakClient("http://kc")
    client.use_service_account("demo", "automation-cli", "secret")
    with pytest.raises(DirectoryAPIError) as exc_info:
        client.get("/admin/realms/demo/users")

    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == 7.0
    assert exc_info.value.transient


def test_client_maps_timeouts_to_unreachable(monkeypatch):
    monkeypatch.setattr(
        client_module.requests, "post", lambda *a, **kw: _resp({"access_token": "t", "expires_in": 300})
    )

    def timeout(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(client_module.requests, "request", timeout)

    client = KeycloakClient("http://kc")
    client.use_service_account("demo", "automation-cli", "secret")
    with pytest.raises(DirectoryUnreachableError):
        client.get("/admin/realms/demo")


def test_client_without_credentials_refuses_requests():
    with pytest.raises(DirectoryAPIError) as exc_info:
        KeycloakClient("http://kc").get("/admin/realms/demo")
    assert exc_info.value.status_code == 401
