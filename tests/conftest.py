"""Pytest shared fixtures for the role engine and the HTTP API."""
import pathlib
import sys
import time
from types import SimpleNamespace
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import jwt
import pytest
import requests
from cryptography.hazmat.primitives.asymmetric import rsa

from admin_console.config.settings import AppConfig
from admin_console.core.audit import MemoryAuditRecorder
from admin_console.core.models import Principal, UserAccount
from admin_console.core.orchestrator import RoleTransitionOrchestrator
from admin_console.core.roles import Role
from admin_console.core.store import InMemoryAccountStore
from admin_console.directory.exceptions import DirectoryAPIError, DirectoryUnreachableError
from admin_console.directory.gateway import InMemoryDirectory
from admin_console.directory.sync import DirectorySyncAdapter, RetryPolicy

TEST_ISSUER = "https://localhost/realms/demo"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _no_network(monkeypatch, request):
    """
    Prevent unit tests from hitting a live directory.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _blocked(method):
        def _stub(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")
        return _stub

    monkeypatch.setattr(requests, "request", lambda method, url, *a, **kw: _blocked(method)(url))
    monkeypatch.setattr(requests, "post", _blocked("POST"))
    monkeypatch.setattr(requests, "get", _blocked("GET"))


# ─────────────────────────────────────────────────────────────────────────────
# Role engine collaborators
# ─────────────────────────────────────────────────────────────────────────────
def make_account(user_id: str = "u-1", role: Role = Role.USER, **overrides) -> UserAccount:
    base = dict(
        id=user_id,
        display_name=f"User {user_id}",
        email=f"{user_id}@acme.test",
        role=role,
        organization_id="org-acme",
        external_id=f"kc-{user_id}",
    )
    base.update(overrides)
    return UserAccount(**base)


def principal(role: Role, user_id: str = "actor-1", org: Optional[str] = "org-acme") -> Principal:
    return Principal(id=user_id, role=role, organization_id=org)


class FlakyDirectory(InMemoryDirectory):
    """In-memory directory that fails a configurable number of calls first."""

    def __init__(self, failures: int = 0, error: Optional[Exception] = None):
        super().__init__()
        self.failures = failures
        self.error = error or DirectoryUnreachableError("connection refused")
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if self.failures < 0 or self.calls <= self.failures:
            raise self.error

    def update_role(self, external_id, role):
        self._maybe_fail()
        self.roles[external_id] = role

    def create_mapping(self, account, role):
        self._maybe_fail()
        return super().create_mapping(account, role)


def always_failing_directory(status_code: Optional[int] = None) -> FlakyDirectory:
    error = DirectoryAPIError(status_code, "boom", "/admin/realms/demo") if status_code else None
    return FlakyDirectory(failures=-1, error=error)


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def store():
    return InMemoryAccountStore([
        make_account("u-1", Role.USER),
        make_account("u-2", Role.ORG_ADMIN),
        make_account("u-3", Role.SUPER_ADMIN),
        make_account("u-new", Role.USER, external_id=None),
        make_account("u-gone", Role.USER, active=False),
    ])


@pytest.fixture()
def directory(store):
    directory = FlakyDirectory()
    for account_id in ("u-1", "u-2", "u-3", "u-gone"):
        account = store.get(account_id)
        directory.roles[account.external_id] = account.role
        directory.emails[account.email] = account.external_id
    return directory


@pytest.fixture()
def audit():
    return MemoryAuditRecorder()


@pytest.fixture()
def sync(directory, sleeps):
    return DirectorySyncAdapter(
        directory,
        RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05),
        sleep=sleeps.append,
    )


@pytest.fixture()
def orchestrator(store, sync, audit):
    orchestrator = RoleTransitionOrchestrator(store, sync, audit, max_workers=2)
    yield orchestrator
    orchestrator.shutdown()


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app_config(tmp_path):
    secrets_dir = tmp_path / "secrets"
    secrets_dir.mkdir()
    (secrets_dir / "keycloak_service_client_secret").write_text("svc-secret")
    (secrets_dir / "audit_log_signing_key").write_text("signing-key")
    return AppConfig(
        demo_mode=True,
        secret_key="test-secret-key",
        directory_backend="memory",
        keycloak_issuer=TEST_ISSUER,
        keycloak_server_url=TEST_ISSUER,
        audit_log_dir=str(tmp_path / "audit"),
        audit_log_signing_key="signing-key",
        secrets_dir=str(secrets_dir),
    )


@pytest.fixture()
def services(app_config, store, directory, audit, sync):
    from admin_console.services import build_services

    services = build_services(app_config, store=store, directory=directory, audit=audit, sync=sync)
    yield services
    services.orchestrator.shutdown()


@pytest.fixture()
def app(app_config, services):
    from admin_console.flask_app import create_app

    flask_app = create_app(app_config, services)
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture()
def client(app, monkeypatch, rsa_key_pair):
    """Flask test client trusting tokens signed with the test key pair."""
    from admin_console.api import decorators

    fake_jwks = SimpleNamespace(
        get_signing_key_from_jwt=lambda token: SimpleNamespace(key=rsa_key_pair["public_key"])
    )
    monkeypatch.setattr(decorators, "get_jwks_client", lambda: fake_jwks)
    with app.test_client() as client:
        yield client


# ─────────────────────────────────────────────────────────────────────────────
# RSA Key Pair for JWT Testing
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(scope="session")
def rsa_key_pair():
    """Generate RSA key pair for JWT signing in tests."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return {"private_key": private_key, "public_key": private_key.public_key()}


def create_jwt(
    rsa_key_pair: dict,
    sub: str = "actor-1",
    role: Optional[object] = "SuperAdmin",
    org: Optional[str] = "org-acme",
    issuer: str = TEST_ISSUER,
    exp_offset: int = 3600,
) -> str:
    """Create an RS256-signed caller token for testing."""
    now = int(time.time())
    payload = {
        "iss": issuer,
        "sub": sub,
        "exp": now + exp_offset,
        "iat": now,
        "nbf": now,
    }
    if role is not None:
        payload["console_role"] = role
    if org is not None:
        payload["org_id"] = org
    return jwt.encode(payload, rsa_key_pair["private_key"], algorithm="RS256", headers={"kid": "test-key"})


def bearer(rsa_key_pair: dict, **claims) -> dict:
    return {"Authorization": f"Bearer {create_jwt(rsa_key_pair, **claims)}"}


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires running Keycloak)"
    )
