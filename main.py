#!/usr/bin/env python3
"""
tokenkeep -- credential and session service with a refresh-token whitelist.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py serve --reload
  python main.py init-db
  python main.py purge-expired

Environment variables (see core/config.py):
  SECRET_KEY      Required unless DEBUG=true. HS256 signing secret, >= 32 chars.
  DEBUG           true = development mode (auto-generated SECRET_KEY).
  DATABASE_URL    SQLAlchemy URL. Defaults to sqlite:///tokenkeep.db beside this file.
  BCRYPT_ROUNDS   bcrypt cost factor, 4..31. Default 12.
"""

import argparse
import sys

from pydantic import ValidationError

from auth.errors import StorageError
from auth.store import UserStore, WhitelistStore
from core.config import get_settings


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_init_db(args: argparse.Namespace) -> int:
    """Create the user and jwt_whitelist tables if they do not exist."""
    users = UserStore(get_settings().database_url)
    users.close()
    print("  Schema ready.")
    return 0


def _cmd_purge_expired(args: argparse.Namespace) -> int:
    """Physically remove whitelist rows whose refresh token has expired.

    Expired rows are already inert (exists() ignores them); this only reclaims space.
    """
    users = UserStore(get_settings().database_url)
    try:
        removed = WhitelistStore(users).purge_expired()
    finally:
        users.close()
    print(f"  Removed {removed} expired whitelist entr{'y' if removed == 1 else 'ies'}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokenkeep",
        description="Credential and session service with a refresh-token whitelist.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only).")
    serve.set_defaults(func=_cmd_serve)

    init_db = sub.add_parser("init-db", help="Create database tables.")
    init_db.set_defaults(func=_cmd_init_db)

    purge = sub.add_parser("purge-expired", help="Delete expired refresh tokens from the whitelist.")
    purge.set_defaults(func=_cmd_purge_expired)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ValidationError as e:
        print(f"  [!] Invalid configuration:\n{e}", file=sys.stderr)
        return 2
    except StorageError as e:
        print(f"  [!] Database error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
