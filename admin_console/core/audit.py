"""Append-only audit trail for role transitions and invitations.

Every attempt (denied, failed, partially applied or succeeded) produces one
record. Records are written as JSON lines and signed with HMAC-SHA256 when a
signing key is configured, so tampering is detectable with ``verify()``.

Recording never raises: if the audit sink is unavailable the record is logged
through the ``admin_console.audit`` logger instead, because an audit failure
must never mask or reverse a role change that already committed.
"""
from __future__ import annotations
import hashlib
import hmac
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Iterator, Union

from .models import AuditRecord

logger = logging.getLogger("admin_console.audit")

AUDIT_LOG_FILENAME = "role-events.jsonl"
DEFAULT_AUDIT_LOG_DIR = ".runtime/audit"


def _sign(payload: dict[str, Any], signing_key: bytes) -> str:
    """HMAC-SHA256 over the canonical JSON representation."""
    if not signing_key:
        return ""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def _coerce_key(signing_key: Union[str, bytes, None]) -> bytes:
    if signing_key is None:
        return b""
    if isinstance(signing_key, bytes):
        return signing_key.strip()
    return signing_key.strip().encode("utf-8")


class AuditRecorder:
    """JSONL audit sink with optional HMAC signatures."""

    def __init__(
        self,
        audit_dir: Union[str, Path, None] = None,
        signing_key: Union[str, bytes, None] = None,
    ):
        self.audit_dir = Path(audit_dir or os.environ.get("AUDIT_LOG_DIR", DEFAULT_AUDIT_LOG_DIR))
        self.audit_file = self.audit_dir / AUDIT_LOG_FILENAME
        self._signing_key = _coerce_key(signing_key)
        self._lock = threading.Lock()

    def _ensure_audit_dir(self) -> None:
        """Create audit directory with restricted permissions."""
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self.audit_dir.chmod(0o700)

    def append(self, record: AuditRecord) -> None:
        """Write one record; raises on I/O errors (see ``record``)."""
        event = record.to_dict()
        signature = _sign(event, self._signing_key)
        if signature:
            event["signature"] = signature

        line = json.dumps(event, ensure_ascii=False) + "\n"
        with self._lock:
            self._ensure_audit_dir()
            with self.audit_file.open("a", encoding="utf-8") as f:
                f.write(line)
            self.audit_file.chmod(0o600)

    def record(self, record: AuditRecord) -> bool:
        """Record an audit entry, degrading to the local log on failure.

        Returns:
            True if the entry reached the audit file, False if it was only
            logged locally.
        """
        try:
            self.append(record)
            return True
        except Exception as exc:
            logger.error(
                "Audit sink unavailable (%s); local copy: %s",
                exc,
                json.dumps(record.to_dict(), ensure_ascii=False),
            )
            return False

    def read_records(self) -> Iterator[AuditRecord]:
        """Yield stored records in write order, skipping malformed lines."""
        if not self.audit_file.exists():
            return
        with self.audit_file.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                    data.pop("signature", None)
                    yield AuditRecord.from_dict(data)
                except (json.JSONDecodeError, KeyError, ValueError):
                    logger.warning("Skipping malformed audit line in %s", self.audit_file)
                    continue

    def verify(self) -> tuple[int, int]:
        """Verify all signatures in the audit log.

        Returns:
            Tuple of (total_events, valid_signatures)
        """
        if not self.audit_file.exists():
            return 0, 0

        total = 0
        valid = 0
        with self.audit_file.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                total += 1
                try:
                    event = json.loads(line)
                    stored_sig = event.pop("signature", "")
                    if not stored_sig:
                        continue
                    computed_sig = _sign(event, self._signing_key)
                    if computed_sig and hmac.compare_digest(stored_sig, computed_sig):
                        valid += 1
                except (json.JSONDecodeError, KeyError):
                    continue
        return total, valid


class MemoryAuditRecorder:
    """In-process recorder for tests and demo mode."""

    def __init__(self, fail: bool = False):
        self.records: list[AuditRecord] = []
        self.fail = fail
        self._lock = threading.Lock()

    def record(self, record: AuditRecord) -> bool:
        if self.fail:
            logger.error("Audit sink unavailable; local copy: %s", json.dumps(record.to_dict()))
            return False
        with self._lock:
            self.records.append(record)
        return True

    def read_records(self) -> Iterator[AuditRecord]:
        with self._lock:
            snapshot = list(self.records)
        yield from snapshot

    def for_target(self, target_user_id: str) -> list[AuditRecord]:
        return [r for r in self.read_records() if r.target_user_id == target_user_id]
