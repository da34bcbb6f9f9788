#!/usr/bin/env python3
"""
TokenGate -- operator CLI for principal administration.

Usage:
  python main.py check-config
  python main.py create-user alice alice@example.com --role admin
  python main.py set-active alice@example.com --inactive
  python main.py set-role alice@example.com moderator

Environment variables are the same as the API server (SECRET_KEY,
DATABASE_URL, BCRYPT_ROUNDS, ...). Passwords are read with getpass, or from
stdin with --password-stdin, never from the command line.
"""

import argparse
import getpass
import sys
from typing import Optional

from pydantic import ValidationError as SettingsError

from auth.models import Role, normalize_email
from auth.passwords import PasswordHasher
from auth.service import SessionService
from auth.store import PrincipalStore
from auth.tokens import TokenCodec
from core.config import Settings, get_settings
from core.errors import AppError
from core.logging import configure_logging


def _build_service(settings: Settings) -> tuple[SessionService, PrincipalStore]:
    config = settings.auth_config()
    store = PrincipalStore(settings.database_url, settings.store_timeout_seconds)
    service = SessionService(
        store=store,
        hasher=PasswordHasher(config.bcrypt_rounds),
        codec=TokenCodec(config.secret_key),
        config=config,
    )
    return service, store


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    if getpass.getpass("Repeat password: ") != first:
        raise AppError("Passwords do not match.")
    return first


def _cmd_check_config(settings: Settings, args: argparse.Namespace) -> int:
    config = settings.auth_config()
    print("Configuration OK.")
    print(f"  access token ttl:   {config.access_token_ttl}s")
    print(f"  refresh token ttl:  {config.refresh_token_ttl}s")
    print(f"  bcrypt rounds:      {config.bcrypt_rounds}")
    print(f"  secure cookies:     {config.secure_cookies}")
    print(f"  login limit:        {config.login_rate_limit}")
    print(f"  register limit:     {config.register_rate_limit}")
    print(f"  database:           {settings.database_url}")
    return 0


def _cmd_create_user(settings: Settings, args: argparse.Namespace) -> int:
    service, store = _build_service(settings)
    try:
        password = _read_password(args.password_stdin)
        result = service.register(
            args.username,
            args.email,
            password,
            first_name=args.first_name,
            last_name=args.last_name,
        )
        if args.role != Role.user.value:
            store.update(result.principal.id, role=args.role)
        print(f"  Created {result.principal.username} ({result.principal.id}) with role {args.role}.")
    finally:
        store.close()
    return 0


def _lookup(store: PrincipalStore, email: str):
    principal = store.get_by_email(normalize_email(email))
    if principal is None:
        raise AppError(f"No principal with email {email!r}.")
    return principal


def _cmd_set_active(settings: Settings, args: argparse.Namespace) -> int:
    _service, store = _build_service(settings)
    try:
        principal = _lookup(store, args.email)
        store.update(principal.id, is_active=args.active)
        state = "active" if args.active else "inactive"
        print(f"  {principal.username} is now {state}.")
    finally:
        store.close()
    return 0


def _cmd_set_role(settings: Settings, args: argparse.Namespace) -> int:
    _service, store = _build_service(settings)
    try:
        principal = _lookup(store, args.email)
        store.update(principal.id, role=args.role)
        print(f"  {principal.username} now has role {args.role}.")
    finally:
        store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokengate",
        description="Administer TokenGate principals.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py check-config
  python main.py create-user alice alice@example.com --role admin
  echo 'Secret123!' | python main.py create-user bob bob@example.com --password-stdin
  python main.py set-active bob@example.com --inactive
  python main.py set-role bob@example.com moderator
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check-config", help="Validate environment settings and print a summary")
    check.set_defaults(handler=_cmd_check_config)

    create = sub.add_parser("create-user", help="Create a principal")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("--role", choices=[r.value for r in Role], default=Role.user.value)
    create.add_argument("--first-name", default=None)
    create.add_argument("--last-name", default=None)
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    create.set_defaults(handler=_cmd_create_user)

    active = sub.add_parser("set-active", help="Activate or deactivate a principal")
    active.add_argument("email")
    group = active.add_mutually_exclusive_group(required=True)
    group.add_argument("--active", dest="active", action="store_true")
    group.add_argument("--inactive", dest="active", action="store_false")
    active.set_defaults(handler=_cmd_set_active)

    role = sub.add_parser("set-role", help="Change a principal's role")
    role.add_argument("email")
    role.add_argument("role", choices=[r.value for r in Role])
    role.set_defaults(handler=_cmd_set_role)

    return parser


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = settings or get_settings()
    except SettingsError as e:
        print(f"  [!] Invalid configuration:\n{e}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level)
    try:
        return args.handler(settings, args)
    except AppError as e:
        print(f"  [!] {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
