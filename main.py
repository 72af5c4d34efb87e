#!/usr/bin/env python3
"""
CredKeep -- credential and session management service.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py create-admin --name "Ops Admin" --email ops@example.com
  python main.py purge-sessions
  python main.py cleanup-activity --days 90

create-admin reads the password from the terminal (or from stdin with
--password-stdin) so it never lands in shell history.

Environment variables:
  All settings come from core/config.py (JWT_SECRET, DATABASE_URL, ...).
  Set DEBUG=true for local development with auto-generated secrets.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.activity import ActivityLog
from auth.models import Account
from auth.passwords import PasswordHasher
from auth.store import AccountStore
from core.clock import utc_now
from core.config import get_settings

logger = logging.getLogger("credkeep.cli")


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        raise ValueError("Passwords do not match")
    return first


def create_admin(store: AccountStore, name: str, email: str, password: str, rounds: int) -> int:
    """Create a verified admin account and return its id.

    Raises ValueError on a policy violation or an email that is already taken.
    """
    from api.models import check_password_policy

    check_password_policy(password)
    account = Account(
        name=name,
        email=email,
        role="admin",
        password_digest=PasswordHasher(rounds).hash(password),
        is_email_verified=True,
    )
    try:
        return store.create_account(account)
    except IntegrityError as exc:
        raise ValueError(f"An account with email {email!r} already exists") from exc


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="credkeep",
        description="Credential and session management service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-admin --name "Ops Admin" --email ops@example.com
  echo 'S3curePass' | python main.py create-admin --name Ops --email ops@example.com --password-stdin
  python main.py purge-sessions
  python main.py cleanup-activity --days 30
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")

    admin = sub.add_parser("create-admin", help="Create a verified admin account")
    admin.add_argument("--name", required=True, help="Display name")
    admin.add_argument("--email", required=True, help="Login email")
    admin.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )

    sub.add_parser("purge-sessions", help="Delete expired refresh-token sessions")

    cleanup = sub.add_parser("cleanup-activity", help="Delete old activity log entries")
    cleanup.add_argument(
        "--days",
        type=int,
        default=90,
        metavar="N",
        help="Keep entries from the last N days (default: 90)",
    )

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    settings = get_settings()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    store = AccountStore(settings.database_url)
    try:
        if args.command == "create-admin":
            try:
                password = _read_password(args.password_stdin)
                account_id = create_admin(store, args.name, args.email, password, settings.bcrypt_rounds)
            except ValueError as e:
                print(f"  [!] {e}", file=sys.stderr)
                return 1
            print(f"  Admin account {account_id} created for {args.email.lower()}.")

        elif args.command == "purge-sessions":
            removed = store.purge_expired_sessions(utc_now())
            print(f"  {removed} expired session(s) removed.")

        elif args.command == "cleanup-activity":
            if args.days < 1:
                print("  [!] --days must be at least 1.", file=sys.stderr)
                return 1
            removed = ActivityLog(store.engine).cleanup(args.days)
            print(f"  {removed} activity entr{'y' if removed == 1 else 'ies'} older than {args.days} days removed.")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
