"""Command-line operations for Keycloak sync.

Usage:
    python -m scripts.sync_cli test-connection
    python -m scripts.sync_cli ensure-roles
    python -m scripts.sync_cli push-user --username nguyen
    python -m scripts.sync_cli push-all
    python -m scripts.sync_cli user-roles --username nguyen
    python -m scripts.sync_cli assign-role --username nguyen --role ADMIN
    python -m scripts.sync_cli verify-audit

Settings come from the same environment variables as the web app; push
commands read local users from USER_STORE_PATH.
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from user_service import audit
from user_service.config import load_settings
from user_service.core.errors import SyncError
from user_service.core.keycloak import KeycloakError
from user_service.services import Services, build_services


def _load_services() -> Services:
    return build_services(load_settings())


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keycloak user sync helper")
    parser.add_argument("--operator", default="cli", help="Operator identifier for audit logs (default: cli)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="cmd")
    sub.add_parser("test-connection", help="Check that the Keycloak realm is reachable")
    sub.add_parser("ensure-roles", help="Create the baseline realm roles if missing")

    pu = sub.add_parser("push-user", help="Push one local user to Keycloak")
    pu.add_argument("--username", required=True)

    sub.add_parser("push-all", help="Push every local user to Keycloak")

    ur = sub.add_parser("user-roles", help="List a user's realm roles")
    ur.add_argument("--username", required=True)

    ar = sub.add_parser("assign-role", help="Grant a realm role to a user")
    ar.add_argument("--username", required=True)
    ar.add_argument("--role", required=True)

    sub.add_parser("verify-audit", help="Verify audit log signatures")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.cmd:
        parser.print_help()
        return 2

    if args.cmd == "verify-audit":
        total, valid = audit.verify_audit_log()
        print(f"Audit log: {valid}/{total} events with valid signatures")
        return 0 if total == valid else 1

    services = _load_services()

    try:
        if args.cmd == "test-connection":
            connected = services.idp.test_connection()
            print("Keycloak connection successful" if connected else "Keycloak connection failed")
            return 0 if connected else 1

        if args.cmd == "ensure-roles":
            created = services.admin.ensure_roles(operator=args.operator)
            print(f"Created roles: {', '.join(created) if created else 'none (all present)'}")
            return 0

        if args.cmd == "push-user":
            pushed = services.admin.push_user(args.username, operator=args.operator)
            if not pushed:
                print(f"[push-user] User '{args.username}' not found in Keycloak", file=sys.stderr)
                return 1
            print(f"User '{args.username}' synced to Keycloak")
            return 0

        if args.cmd == "push-all":
            result = services.bulk.push_all(operator=args.operator)
            print(json.dumps(result.to_dict(), indent=2))
            return 0 if result.failed == 0 else 1

        if args.cmd == "user-roles":
            for role in sorted(services.admin.user_roles(args.username)):
                print(role)
            return 0

        if args.cmd == "assign-role":
            roles = services.admin.assign_role(args.username, args.role, operator=args.operator)
            print(f"Role '{args.role}' assigned to '{args.username}'. Roles: {', '.join(sorted(roles))}")
            return 0
    except (SyncError, KeycloakError) as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
