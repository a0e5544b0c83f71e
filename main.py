#!/usr/bin/env python3
"""
Auth service -- command-line entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 3001 --reload
  python main.py create-admin --email ops@example.com --password 'Str0ngPass!'
  python main.py create-admin --email root@example.com --password '...' --role super_admin

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL of the user database (default sqlite:///authservice.db).
  REDIS_URL      Session store URL (default redis://localhost:6379/0).
"""

import argparse
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=get_settings().log_level.lower(),
    )
    return 0


def _create_admin(args: argparse.Namespace) -> int:
    """Insert an administrative account directly into the user database.

    Self-registration only ever creates customers, so this is how the first
    admin gets in.
    """
    if len(args.password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    settings = get_settings()
    email = args.email.strip().lower() if settings.normalize_email_case else args.email.strip()
    store = UserStore(settings.database_url)
    try:
        user = User(
            email=email,
            hashed_password=hash_password(args.password),
            first_name=args.first_name,
            last_name=args.last_name,
            role=args.role,
            is_email_verified=True,
        )
        try:
            user_id = store.create_user(user)
        except IntegrityError:
            print(f"  [!] A user with email '{email}' already exists.")
            return 1
    finally:
        store.close()

    print(f"  Created {args.role} {email} (id {user_id}).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authservice",
        description="Credential and session lifecycle service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 3001
  python main.py create-admin --email ops@example.com --password 'Str0ngPass!'
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=_serve)

    admin = sub.add_parser("create-admin", help="Create an admin or super_admin account")
    admin.add_argument("--email", required=True, metavar="EMAIL")
    admin.add_argument("--password", required=True, metavar="PASSWORD")
    admin.add_argument(
        "--role",
        choices=[Role.admin.value, Role.super_admin.value],
        default=Role.admin.value,
        help="Role to grant (default: admin)",
    )
    admin.add_argument("--first-name", default="Admin", metavar="NAME")
    admin.add_argument("--last-name", default="User", metavar="NAME")
    admin.set_defaults(func=_create_admin)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
