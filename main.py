#!/usr/bin/env python3
"""
CarFleet -- users and their cars behind a JWT-authenticated REST API.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py init-db
  python main.py create-user --login alice --email alice@example.com

Environment variables (see core/config.py):
  SECRET_KEY    Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL  SQLAlchemy URL. Defaults to carfleet.db next to the code.
"""

import argparse
import getpass
import sys

from core.config import get_settings
from core.errors import FleetError
from fleet.models import UserDraft
from fleet.service import FleetService
from fleet.store import FleetStore


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _init_db(args: argparse.Namespace) -> int:
    """Create the tables if they do not exist yet. Safe to run repeatedly."""
    store = FleetStore(get_settings().database_url)
    store.close()
    print("  Database ready.")
    return 0


def _create_user(args: argparse.Namespace) -> int:
    """Create an account from the command line. Prompts for the password."""
    password = args.password or getpass.getpass("  Password: ")
    store = FleetStore(get_settings().database_url)
    try:
        created = FleetService(store).create_user(
            UserDraft(
                login=args.login,
                email=args.email,
                password=password,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    except FleetError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()
    print(f"  Created user {created.user.id} ({created.user.login}).")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="carfleet",
        description="Users and cars REST API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py init-db
  python main.py create-user --login alice --email alice@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=_serve)

    init_db = sub.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(func=_init_db)

    create_user = sub.add_parser("create-user", help="Create a user account")
    create_user.add_argument("--login", required=True)
    create_user.add_argument("--email", required=True)
    create_user.add_argument("--password", help="Omit to be prompted (keeps it out of shell history)")
    create_user.add_argument("--first-name", dest="first_name")
    create_user.add_argument("--last-name", dest="last_name")
    create_user.set_defaults(func=_create_user)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
