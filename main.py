#!/usr/bin/env python3
"""
Procurement auth service -- operator CLI.

Usage:
  python main.py create-user --org ORG --email admin@example.com --name "Ada Admin" --role ADMIN
  python main.py create-user ... --permission MANAGE_USERS --permission MANAGE_SYSTEM
  python main.py sweep-tokens
  python main.py revoke-sessions USER_ID

Configuration comes from the same environment / .env file as the API
(DATABASE_URL, SECRET_KEY, BCRYPT_ROUNDS, ...). The password for create-user
is read with getpass (or from stdin with --password-stdin); it is never
accepted as a command-line argument, where it would land in shell history.
"""

import argparse
import getpass
import sys

from auth.errors import AuthError, StoreError
from auth.models import Permission, RegisterUser, UserRole
from auth.passwords import password_too_long
from auth.wiring import build_services
from core.config import get_settings
from core.logging import configure_logging


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(2)
    return first


def _create_user(services, args: argparse.Namespace) -> int:
    password = _read_password(args.password_stdin)
    if len(password) < 8 or password_too_long(password):
        print("  [!] Password must be at least 8 characters and at most 72 bytes as UTF-8.")
        return 2
    profile = services.session.register(
        RegisterUser(
            organization_id=args.org,
            email=args.email,
            password=password,
            name=args.name,
            role=UserRole(args.role),
            permissions=frozenset(args.permission or ()),
        )
    )
    print(f"  Created user {profile.id} ({profile.email}, {profile.role.value})")
    return 0


def _sweep_tokens(services, args: argparse.Namespace) -> int:
    swept = services.session.sweep_expired_tokens()
    print(f"  Revoked {swept} expired refresh token(s).")
    return 0


def _revoke_sessions(services, args: argparse.Namespace) -> int:
    revoked = services.session.logout_all(args.user_id)
    print(f"  Revoked {revoked} refresh token(s) for user {args.user_id}.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="procure-auth",
        description="Operator commands for the procurement auth service.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Register a user (e.g. the first platform admin)")
    create.add_argument("--org", required=True, help="Organization id")
    create.add_argument("--email", required=True)
    create.add_argument("--name", required=True)
    create.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.ADMIN.value)
    create.add_argument(
        "--permission",
        action="append",
        choices=[p.value for p in Permission],
        help="Permission tag; repeat for several",
    )
    create.add_argument("--password-stdin", action="store_true", help="Read the password from stdin")
    create.set_defaults(handler=_create_user)

    sweep = sub.add_parser("sweep-tokens", help="Revoke expired refresh tokens (housekeeping)")
    sweep.set_defaults(handler=_sweep_tokens)

    revoke = sub.add_parser("revoke-sessions", help="Revoke every refresh token a user holds")
    revoke.add_argument("user_id")
    revoke.set_defaults(handler=_revoke_sessions)

    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)
    try:
        return args.handler(services, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    except StoreError as exc:
        print(f"  [!] Database error: {exc}")
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
