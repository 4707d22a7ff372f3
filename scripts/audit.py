"""Verify the signed role-change audit trail.

Usage:
    python scripts/audit.py [--audit-dir DIR] [--signing-key KEY] [--show N]

Exits non-zero when any record has a missing or invalid signature.
"""
from __future__ import annotations
import argparse
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from admin_console.core.audit import DEFAULT_AUDIT_LOG_DIR, AuditRecorder


def _signing_key(explicit: str | None) -> str:
    if explicit:
        return explicit
    key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    if key_file and Path(key_file).exists():
        return Path(key_file).read_text(encoding="utf-8").strip()
    return os.environ.get("AUDIT_LOG_SIGNING_KEY", "")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify role-change audit signatures")
    parser.add_argument("--audit-dir", default=os.environ.get("AUDIT_LOG_DIR", DEFAULT_AUDIT_LOG_DIR))
    parser.add_argument("--signing-key", default=None)
    parser.add_argument("--show", type=int, default=0, help="Print the last N records")
    args = parser.parse_args(argv)

    recorder = AuditRecorder(args.audit_dir, _signing_key(args.signing_key))
    total, valid = recorder.verify()
    print(f"Audit log: {valid}/{total} events with valid signatures ({recorder.audit_file})")

    if args.show:
        records = list(recorder.read_records())[-args.show:]
        for record in records:
            prior = record.prior_role.value if record.prior_role else "-"
            print(
                f"{record.timestamp.isoformat()} {record.action.value:<12} {record.outcome.value:<18} "
                f"{record.actor_id} -> {record.target_user_id} {prior} => {record.requested_role.value}"
            )

    return 0 if total == valid else 1


if __name__ == "__main__":
    sys.exit(main())
