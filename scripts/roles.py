"""Operator CLI for tenant role management.

Runs the same orchestrator as the HTTP API, so policy, directory sync and
auditing behave identically. The acting principal is given explicitly.

Examples:
    python scripts/roles.py --actor-id ops-1 --actor-role SuperAdmin promote --user u-42
    python scripts/roles.py --actor-id ops-1 --actor-role Developer change --user u-42 --role SuperAdmin
    python scripts/roles.py --actor-id adm-7 --actor-role OrgAdmin --org acme invite \
        --email jane@acme.test --name "Jane Doe" --role User
    python scripts/roles.py --actor-id ops-1 --actor-role Developer lagging
"""
from __future__ import annotations
import argparse
import json
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from admin_console.config import load_settings
from admin_console.core.errors import ConsoleError, PolicyDenied
from admin_console.core.models import NewUserDraft, Outcome, Principal, RoleTransitionRequest
from admin_console.core.policy import INSUFFICIENT_PRIVILEGE
from admin_console.core.roles import Role
from admin_console.services import build_services

EXIT_CODES = {
    Outcome.SUCCEEDED: 0,
    Outcome.PARTIALLY_APPLIED: 3,
    Outcome.POLICY_DENIED: 4,
}


def _role(value: str) -> Role:
    try:
        return Role.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tenant admin console role management")
    parser.add_argument("--actor-id", default=os.environ.get("CONSOLE_ACTOR_ID"), required=not os.environ.get("CONSOLE_ACTOR_ID"))
    parser.add_argument("--actor-role", type=_role, default=os.environ.get("CONSOLE_ACTOR_ROLE", "User"))
    parser.add_argument("--org", default=os.environ.get("CONSOLE_ACTOR_ORG"))
    sub = parser.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("promote", help="Grant an administrative role")
    sp.add_argument("--user", required=True)
    sp.add_argument("--role", type=_role, default=Role.ORG_ADMIN)
    sp.add_argument("--reason")

    sr = sub.add_parser("revoke", help="Demote an administrator to User")
    sr.add_argument("--user", required=True)
    sr.add_argument("--reason")

    sc = sub.add_parser("change", help="Set an arbitrary role")
    sc.add_argument("--user", required=True)
    sc.add_argument("--role", type=_role, required=True)
    sc.add_argument("--reason")

    si = sub.add_parser("invite", help="Create a user account and directory mapping")
    si.add_argument("--email", required=True)
    si.add_argument("--name", required=True)
    si.add_argument("--role", type=_role, default=Role.USER)
    si.add_argument("--target-org")

    sub.add_parser("lagging", help="List accounts missing from the directory")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    services = build_services(load_settings())
    principal = Principal(id=args.actor_id, role=args.actor_role, organization_id=args.org)

    try:
        if args.cmd == "promote":
            result = services.orchestrator.promote_to_admin(principal, args.user, args.role, args.reason)
        elif args.cmd == "revoke":
            result = services.orchestrator.revoke_admin(principal, args.user, args.reason)
        elif args.cmd == "change":
            result = services.orchestrator.apply(
                RoleTransitionRequest(principal, args.user, args.role, args.reason)
            )
        elif args.cmd == "invite":
            draft = NewUserDraft(args.name, args.email, args.target_org or args.org)
            result = services.invitations.invite(principal, draft, args.role)
        else:
            if not principal.role.is_system_role:
                raise PolicyDenied(INSUFFICIENT_PRIVILEGE, "Required role: Developer or SuperAdmin")
            for account in services.store.list_lagging():
                print(f"{account.id}\t{account.email}\t{account.role.value}\t{account.organization_id or '-'}")
            return 0
    except ConsoleError as e:
        print(f"[{args.cmd}] Error: {e.detail}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"[{args.cmd}] Invalid input: {e}", file=sys.stderr)
        return 2
    finally:
        services.orchestrator.shutdown()

    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_CODES.get(result.outcome, 1)


if __name__ == "__main__":
    sys.exit(main())
