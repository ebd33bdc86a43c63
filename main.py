#!/usr/bin/env python3
"""
TierGate -- operator CLI for the user directory and the session store.

Usage:
  python main.py create-user alice --email alice@example.com
  python main.py create-user root --role admin --password 'correct horse battery'
  python main.py list-users
  python main.py delete-user 3
  python main.py purge-sessions

Store locations come from the same settings as the web app (AUTH_DB_URL,
SESSION_DB_URL, SESSION_TTL_SECONDS; see core/config.py).
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.passwords import hash_password
from auth.session_store import SessionStore
from auth.store import UserStore
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _user_store() -> UserStore:
    settings = get_settings()
    return UserStore(settings.auth_db_url, secret_fields=[settings.password_field])


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the --password value, or prompt twice for one."""
    if given is not None:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def cmd_create_user(args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if password is None:
        return 1
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1
    store = _user_store()
    try:
        user_id = store.create_user(
            User(username=args.username, email=args.email, role=args.role, hashed_password=hash_password(password))
        )
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' (or with that email) already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created user #{user_id} '{args.username}' ({args.role}).")
    return 0


def cmd_list_users(args: argparse.Namespace) -> int:
    store = _user_store()
    try:
        users = store.list_users()
    finally:
        store.close()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'ID':>4}  {'USERNAME':<24} {'ROLE':<8} {'ACTIVE':<6} LAST LOGIN")
    for u in users:
        print(f"  {u.id:>4}  {u.username:<24} {u.role:<8} {'yes' if u.is_active else 'no':<6} {u.last_login or '-'}")
    return 0


def cmd_delete_user(args: argparse.Namespace) -> int:
    store = _user_store()
    try:
        deleted = store.delete_user(args.user_id)
    finally:
        store.close()
    if not deleted:
        print(f"  [!] No user with id {args.user_id}.")
        return 1
    print(f"  Deleted user #{args.user_id}.")
    return 0


def cmd_purge_sessions(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = SessionStore(settings.session_db_url, ttl_seconds=settings.session_ttl_seconds)
    try:
        removed = store.purge_expired()
        remaining = store.count()
    finally:
        store.close()
    print(f"  Purged {removed} expired session(s); {remaining} remaining.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tiergate",
        description="Manage TierGate users and sessions.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Add a user to the directory")
    create.add_argument("username")
    create.add_argument("--email", default=None)
    create.add_argument("--role", choices=["admin", "member"], default="member")
    create.add_argument("--password", default=None, help="Prompted for when omitted")
    create.set_defaults(func=cmd_create_user)

    listing = sub.add_parser("list-users", help="Show all users")
    listing.set_defaults(func=cmd_list_users)

    delete = sub.add_parser("delete-user", help="Remove a user by id")
    delete.add_argument("user_id", type=int)
    delete.set_defaults(func=cmd_delete_user)

    purge = sub.add_parser("purge-sessions", help="Drop sessions idle longer than SESSION_TTL_SECONDS")
    purge.set_defaults(func=cmd_purge_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
