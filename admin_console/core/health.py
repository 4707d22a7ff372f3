"""Health probes for the console's external dependencies.

Each probe is synchronous and returns a ``HealthReport`` with one of
``healthy``, ``degraded`` or ``unhealthy``. Probes never raise; the
monitoring layer (``/health`` endpoints, orchestration) decides what to do.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass(frozen=True)
class HealthReport:
    status: HealthStatus
    reason: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def healthy(cls, reason: Optional[str] = None, **data: Any) -> "HealthReport":
        return cls(HealthStatus.HEALTHY, reason, data)

    @classmethod
    def degraded(cls, reason: str, **data: Any) -> "HealthReport":
        return cls(HealthStatus.DEGRADED, reason, data)

    @classmethod
    def unhealthy(cls, reason: str, **data: Any) -> "HealthReport":
        return cls(HealthStatus.UNHEALTHY, reason, data)

    @property
    def ok(self) -> bool:
        return self.status is not HealthStatus.UNHEALTHY

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value}
        if self.reason:
            payload["reason"] = self.reason
        if self.data:
            payload["data"] = self.data
        return payload


class HealthProbe(Protocol):
    name: str

    def check(self) -> HealthReport: ...


class DirectoryProbe:
    """Identity directory connectivity, delegated to the gateway's probe."""

    name = "directory"

    def __init__(self, gateway):
        self.gateway = gateway

    def check(self) -> HealthReport:
        try:
            return self.gateway.probe()
        except Exception as exc:
            logger.error("Directory health check failed: %s", exc, exc_info=True)
            return HealthReport.unhealthy(f"Directory unavailable: {exc}", error_type=type(exc).__name__)


class SecretStoreProbe:
    """Secret store (Docker secrets mount) connectivity.

    Unhealthy when the mount is missing or unreadable, degraded when some
    required secrets are absent or empty.
    """

    name = "secrets"

    def __init__(self, secrets_dir: str | Path, required: Iterable[str] = ()):
        self.secrets_dir = Path(secrets_dir)
        self.required = [name for name in required if name]

    def check(self) -> HealthReport:
        try:
            if not self.secrets_dir.is_dir():
                return HealthReport.unhealthy(f"Secret store not mounted at {self.secrets_dir}")
            present = {p.name for p in self.secrets_dir.iterdir() if p.is_file()}
            missing = []
            for name in self.required:
                secret_file = self.secrets_dir / name
                if name not in present or not secret_file.read_text().strip():
                    missing.append(name)
        except OSError as exc:
            logger.error("Secret store health check failed: %s", exc)
            return HealthReport.unhealthy(f"Secret store unreadable: {exc}", error_type=type(exc).__name__)

        if missing:
            logger.warning("Secret store missing secrets: %s", ", ".join(missing))
            return HealthReport.degraded(
                f"Missing secrets: {', '.join(missing)}", missing_count=len(missing)
            )
        return HealthReport.healthy("Secret store accessible", secret_count=len(present))


def run_probes(probes: Iterable[HealthProbe]) -> tuple[HealthStatus, dict[str, HealthReport]]:
    """Run every probe and return the worst status plus individual reports."""
    reports = {probe.name: probe.check() for probe in probes}
    overall = HealthStatus.HEALTHY
    for report in reports.values():
        if _SEVERITY[report.status] > _SEVERITY[overall]:
            overall = report.status
    return overall, reports
