"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_SECRETS_DIR = "/run/secrets"


def _secrets_dir() -> Path:
    return Path(os.environ.get("SECRETS_DIR", DEFAULT_SECRETS_DIR))


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from the secrets mount (Docker secrets pattern).

    Priority:
    1. {SECRETS_DIR}/{secret_name} (Docker secrets mount, default /run/secrets)
    2. Environment variable (fallback)

    Returns:
        Secret value or None if not found
    """
    secret_file = _secrets_dir() / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from {secret_file.parent}")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read {secret_file}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _env_bool(name: str, default: bool) -> bool:
    return os.environ.get(name, str(default)).strip().lower() == "true"


def _env_number(name: str, default, cast=float):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got '{raw}'") from exc
    if value < 0:
        raise RuntimeError(f"Environment variable {name} must not be negative")
    return value


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str

    # Account store
    database_url: str = "sqlite:///:memory:"

    # Identity directory (Keycloak)
    directory_backend: str = "keycloak"
    keycloak_url: str = ""
    keycloak_realm: str = "demo"
    keycloak_service_realm: str = "demo"
    keycloak_service_client_id: str = "automation-cli"
    keycloak_service_client_secret: str = ""
    role_group_prefix: str = "console-"
    sync_role_groups: bool = True

    # Directory sync retry policy
    sync_max_attempts: int = 3
    sync_base_delay: float = 1.0
    sync_max_delay: float = 30.0

    # Caller authentication (bearer JWT)
    keycloak_issuer: str = ""
    keycloak_server_url: str = ""
    principal_role_claim: str = "console_role"
    principal_org_claim: str = "org_id"

    # Audit
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""

    # Health
    secrets_dir: str = DEFAULT_SECRETS_DIR
    required_secrets: list[str] = field(default_factory=lambda: ["keycloak_service_client_secret", "audit_log_signing_key"])

    # Worker pool for asynchronous transitions
    transition_workers: int = 4


def load_settings() -> AppConfig:
    """Load application settings from environment and the secrets mount."""
    demo_mode = _env_bool("DEMO_MODE", False)

    secret_key = _load_secret_from_file("flask_secret_key", "FLASK_SECRET_KEY")
    if not secret_key:
        if not demo_mode:
            raise RuntimeError("FLASK_SECRET_KEY not found in secrets mount or environment")
        secret_key = secrets.token_urlsafe(48)
        print("[demo-mode] Generated temporary FLASK_SECRET_KEY")

    directory_backend = os.environ.get("DIRECTORY_BACKEND", "memory" if demo_mode else "keycloak").strip().lower()
    if directory_backend not in {"keycloak", "memory"}:
        raise RuntimeError(f"DIRECTORY_BACKEND must be 'keycloak' or 'memory', got '{directory_backend}'")
    if directory_backend == "memory" and not demo_mode:
        raise RuntimeError("DIRECTORY_BACKEND=memory is only allowed with DEMO_MODE=true")

    keycloak_url = _get_or_generate(
        "KEYCLOAK_URL",
        demo_default="http://127.0.0.1:8080",
        required=directory_backend == "keycloak",
        demo_mode=demo_mode,
    )
    keycloak_realm = os.environ.get("KEYCLOAK_REALM", "demo")
    keycloak_service_realm = os.environ.get("KEYCLOAK_SERVICE_REALM", keycloak_realm)
    keycloak_service_client_id = os.environ.get("KEYCLOAK_SERVICE_CLIENT_ID", "automation-cli")

    keycloak_service_client_secret = _load_secret_from_file(
        "keycloak_service_client_secret", "KEYCLOAK_SERVICE_CLIENT_SECRET"
    ) or ""
    if not keycloak_service_client_secret and directory_backend == "keycloak":
        if not demo_mode:
            raise RuntimeError("KEYCLOAK_SERVICE_CLIENT_SECRET not found in secrets mount or environment")
        keycloak_service_client_secret = "demo-service-secret"

    keycloak_issuer = _get_or_generate(
        "KEYCLOAK_ISSUER",
        demo_default=f"http://localhost:8080/realms/{keycloak_realm}",
        demo_mode=demo_mode,
    )
    keycloak_server_url = os.environ.get("KEYCLOAK_SERVER_URL", keycloak_issuer)

    database_url = _get_or_generate("DATABASE_URL", demo_default="sqlite:///:memory:", demo_mode=demo_mode)

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if not audit_log_signing_key and demo_mode:
        audit_log_signing_key = os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production")
        print(f"[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY: {audit_log_signing_key[:20]}...")

    required_secrets = [
        name.strip()
        for name in os.environ.get("REQUIRED_SECRETS", "keycloak_service_client_secret,audit_log_signing_key").split(",")
        if name.strip()
    ]

    sync_max_attempts = int(_env_number("DIRECTORY_SYNC_MAX_ATTEMPTS", 3, int))
    if sync_max_attempts < 1:
        raise RuntimeError("DIRECTORY_SYNC_MAX_ATTEMPTS must be at least 1")

    cfg = AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        database_url=database_url,
        directory_backend=directory_backend,
        keycloak_url=keycloak_url,
        keycloak_realm=keycloak_realm,
        keycloak_service_realm=keycloak_service_realm,
        keycloak_service_client_id=keycloak_service_client_id,
        keycloak_service_client_secret=keycloak_service_client_secret,
        role_group_prefix=os.environ.get("ROLE_GROUP_PREFIX", "console-"),
        sync_role_groups=_env_bool("SYNC_ROLE_GROUPS", True),
        sync_max_attempts=sync_max_attempts,
        sync_base_delay=_env_number("DIRECTORY_SYNC_BASE_DELAY", 1.0),
        sync_max_delay=_env_number("DIRECTORY_SYNC_MAX_DELAY", 30.0),
        keycloak_issuer=keycloak_issuer,
        keycloak_server_url=keycloak_server_url,
        principal_role_claim=os.environ.get("PRINCIPAL_ROLE_CLAIM", "console_role"),
        principal_org_claim=os.environ.get("PRINCIPAL_ORG_CLAIM", "org_id"),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"),
        audit_log_signing_key=audit_log_signing_key,
        secrets_dir=str(_secrets_dir()),
        required_secrets=required_secrets,
        transition_workers=int(_env_number("TRANSITION_WORKERS", 4, int)) or 1,
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; realm={keycloak_realm}; directory={directory_backend}")
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")
    return cfg
