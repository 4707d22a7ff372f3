"""Wiring of the role engine from configuration.

Used by the Flask factory and the operator CLI so both run the exact same
orchestrator, invitation composer and health probes.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from admin_console.config import AppConfig
from admin_console.core.audit import AuditRecorder
from admin_console.core.health import DirectoryProbe, HealthProbe, SecretStoreProbe
from admin_console.core.invitations import InvitationComposer
from admin_console.core.orchestrator import RoleTransitionOrchestrator
from admin_console.core.store import AccountStore, SqlAccountStore
from admin_console.directory.client import KeycloakClient
from admin_console.directory.gateway import DirectoryGateway, InMemoryDirectory
from admin_console.directory.keycloak import KeycloakDirectory
from admin_console.directory.sync import DirectorySyncAdapter, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class ConsoleServices:
    store: AccountStore
    directory: DirectoryGateway
    sync: DirectorySyncAdapter
    audit: AuditRecorder
    orchestrator: RoleTransitionOrchestrator
    invitations: InvitationComposer
    probes: list[HealthProbe]


def build_directory(cfg: AppConfig) -> DirectoryGateway:
    if cfg.directory_backend == "memory":
        logger.warning("Using in-memory identity directory (demo mode)")
        return InMemoryDirectory()
    client = KeycloakClient(cfg.keycloak_url)
    client.use_service_account(
        cfg.keycloak_service_realm, cfg.keycloak_service_client_id, cfg.keycloak_service_client_secret
    )
    return KeycloakDirectory(
        client,
        cfg.keycloak_realm,
        group_prefix=cfg.role_group_prefix,
        sync_groups=cfg.sync_role_groups,
    )


def build_services(
    cfg: AppConfig,
    *,
    store: Optional[AccountStore] = None,
    directory: Optional[DirectoryGateway] = None,
    audit: Optional[AuditRecorder] = None,
    sync: Optional[DirectorySyncAdapter] = None,
) -> ConsoleServices:
    """Build the service graph; any collaborator can be supplied explicitly."""
    store = store or SqlAccountStore(cfg.database_url)
    directory = directory or build_directory(cfg)
    audit = audit or AuditRecorder(cfg.audit_log_dir, cfg.audit_log_signing_key)
    sync = sync or DirectorySyncAdapter(
        directory,
        RetryPolicy(cfg.sync_max_attempts, cfg.sync_base_delay, cfg.sync_max_delay),
    )
    return ConsoleServices(
        store=store,
        directory=directory,
        sync=sync,
        audit=audit,
        orchestrator=RoleTransitionOrchestrator(store, sync, audit, max_workers=cfg.transition_workers),
        invitations=InvitationComposer(store, sync, audit),
        probes=[DirectoryProbe(directory), SecretStoreProbe(cfg.secrets_dir, cfg.required_secrets)],
    )
