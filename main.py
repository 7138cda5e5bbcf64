#!/usr/bin/env python3
"""
KeyPortal -- administration CLI.

Works directly against the configured database (DATABASE_URL), so it can
bootstrap the first admin account before the web API is running.

Usage:
  python main.py create-admin ADMIN admin@example.com
  python main.py create-admin ADMIN admin@example.com --password 's3cret!'
  python main.py generate-keys --quantity 10 --days 30 --prefix BETA
  python main.py generate-keys --quantity 5 --days 0 --notes "partner batch"
  python main.py stats

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the credential database (default: ./keyportal.db)
  SECRET_KEY     Required unless DEBUG=true
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Account
from auth.store import CredentialStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password
from licensing.errors import KeyGenerationError
from licensing.keygen import MAX_QUANTITY, MIN_QUANTITY, generate_access_keys


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the password from --password, or prompt twice for it."""
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        print("  [!] Passwords don't match.")
        return None
    return first


def create_admin(store: CredentialStore, username: str, email: str, password: str) -> int:
    """Create an admin account, or promote an existing one with the same username.

    Returns the account ID.
    """
    existing = store.get_account_by_username(username)
    if existing is not None:
        store.update_account(existing.id, is_admin=True)
        print(f"  {username} already exists -- promoted to admin.")
        return existing.id
    account_id = store.create_account(
        Account(username=username, email=email, hashed_password=hash_password(password), is_admin=True)
    )
    print(f"  Admin account {username} created (id {account_id}).")
    return account_id


def _cmd_create_admin(store: CredentialStore, args: argparse.Namespace) -> int:
    if store.get_account_by_username(args.username) is None:
        password = _read_password(args.password)
        if not password or len(password) < 6:
            print("  [!] Password must be at least 6 characters.")
            return 1
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
            return 1
    else:
        password = ""
    try:
        create_admin(store, args.username, args.email, password)
    except IntegrityError:
        print(f"  [!] Email {args.email} is already registered to another account.")
        return 1
    return 0


def _cmd_generate_keys(store: CredentialStore, args: argparse.Namespace) -> int:
    try:
        keys = generate_access_keys(
            store,
            quantity=args.quantity,
            expiration_days=args.days,
            prefix=args.prefix,
            notes=args.notes,
        )
    except (ValueError, KeyGenerationError) as e:
        print(f"  [!] {e}")
        return 1
    for key in keys:
        print(key.key_value)
    expiry = keys[0].expires_at if keys and keys[0].expires_at else "never"
    print(f"\n  {len(keys)} key(s) generated, expires: {expiry}", file=sys.stderr)
    return 0


def _cmd_stats(store: CredentialStore, args: argparse.Namespace) -> int:
    stats = store.get_stats()
    print(f"  Users:    {stats.total_users} ({stats.active_users} active, {stats.blocked_users} blocked)")
    print(f"  Keys:     {stats.total_keys}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyportal",
        description="Administration commands for the KeyPortal credential database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = sub.add_parser("create-admin", help="Create an admin account or promote an existing one")
    admin.add_argument("username")
    admin.add_argument("email")
    admin.add_argument("--password", default=None, help="Password (prompted when omitted)")
    admin.set_defaults(func=_cmd_create_admin)

    keys = sub.add_parser("generate-keys", help="Mint a batch of unowned access keys")
    keys.add_argument(
        "--quantity",
        type=int,
        default=1,
        help=f"Number of keys to generate ({MIN_QUANTITY}-{MAX_QUANTITY}, default: 1)",
    )
    keys.add_argument("--days", type=int, default=0, help="Days until expiry; 0 means never (default: 0)")
    keys.add_argument("--prefix", default=None, help="Key prefix (default: DEFAULT_KEY_PREFIX)")
    keys.add_argument("--notes", default=None, help="Free-text note stored on every key")
    keys.set_defaults(func=_cmd_generate_keys)

    stats = sub.add_parser("stats", help="Print account and key totals")
    stats.set_defaults(func=_cmd_stats)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    store = CredentialStore(args.database_url)
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
