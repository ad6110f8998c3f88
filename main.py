#!/usr/bin/env python3
"""
Admin auth -- operator command line.

Usage:
  python main.py create-admin alice
  python main.py create-admin alice --email alice@example.com
  python main.py purge-tokens
  python main.py audit
  python main.py audit --limit 20 --offset 40

Configuration comes from the same environment variables / .env file as the
API (DATABASE_URL, SECRET_KEY, ...). See core/config.py.
"""

import argparse
import getpass
import logging
import sys

from auth.clock import SystemClock
from auth.errors import AuthError
from auth.service import AuthService
from auth.store import AdminStore, AuditLogStore, AuthDatabase, RefreshTokenStore
from auth.tokens import TokenService
from core.config import get_settings

logger = logging.getLogger("adminauth.cli")


def _build_services(db: AuthDatabase) -> tuple[AuthService, TokenService]:
    settings = get_settings()
    clock = SystemClock()
    admins = AdminStore(db)
    tokens = TokenService(RefreshTokenStore(db), admins, settings, clock)
    return AuthService(admins, AuditLogStore(db), tokens, settings, clock), tokens


def _cmd_create_admin(args: argparse.Namespace, auth: AuthService, tokens: TokenService) -> int:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return 1
    admin = auth.create_admin(args.username, password, email=args.email, user_agent="cli")
    print(f"  Created admin '{admin.username}' (id={admin.id}).")
    return 0


def _cmd_purge_tokens(args: argparse.Namespace, auth: AuthService, tokens: TokenService) -> int:
    count = tokens.purge_expired()
    print(f"  Purged {count} expired refresh token(s).")
    return 0


def _cmd_audit(args: argparse.Namespace, auth: AuthService, tokens: TokenService) -> int:
    entries = auth.get_audit_log(limit=args.limit, offset=args.offset)
    if not entries:
        print("  No audit entries.")
        return 0
    for e in entries:
        status = "ok  " if e.success else "FAIL"
        who = e.username or (f"#{e.admin_id}" if e.admin_id else "-")
        when = e.created_at.strftime("%Y-%m-%d %H:%M:%S") if e.created_at else "?"
        print(f"  {when}  {status}  {e.action.value:<24} {who:<16} {e.ip_address or '-':<15} {e.details or ''}")
    return 0


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Admin auth operator tools")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-admin", help="Create a new admin (prompts for the password)")
    create.add_argument("username")
    create.add_argument("--email", default=None)
    create.set_defaults(func=_cmd_create_admin)

    purge = sub.add_parser("purge-tokens", help="Delete expired refresh token rows")
    purge.set_defaults(func=_cmd_purge_tokens)

    audit = sub.add_parser("audit", help="Print the audit log, newest first")
    audit.add_argument("--limit", type=int, default=50)
    audit.add_argument("--offset", type=int, default=0)
    audit.set_defaults(func=_cmd_audit)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    args = _parser().parse_args(argv)
    db = AuthDatabase(get_settings().database_url)
    try:
        auth, tokens = _build_services(db)
        return args.func(args, auth, tokens)
    except AuthError as exc:
        print(f"  [!] {exc.code.value}: {exc.message}")
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
