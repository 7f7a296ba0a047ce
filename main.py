#!/usr/bin/env python3
"""
socialfeed -- Social feed backend: posts, follows and a personalized feed behind JWT auth.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py init-db
  python main.py set-role 42 moderator

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Session token signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL. Defaults to a local SQLite file.
  REDIS_ENABLED  Set to true to cache user lookups in Redis (REDIS_URL).
"""

import argparse
import sys

from core.config import get_settings
from core.errors import SocialFeedError


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _init_db(args: argparse.Namespace) -> int:
    from auth.store import UserStore
    from social.store import SocialStore

    settings = get_settings()
    user_store = UserStore(settings.database_url, timeout=settings.db_timeout_seconds)
    SocialStore(engine=user_store.engine)
    roles = ", ".join(f"{r.name}={r.level}" for r in user_store.list_roles())
    user_store.close()
    print(f"  Schema ready at {settings.database_url}")
    print(f"  Roles: {roles}")
    return 0


def _set_role(args: argparse.Namespace) -> int:
    from auth.store import UserStore

    settings = get_settings()
    user_store = UserStore(settings.database_url, timeout=settings.db_timeout_seconds)
    try:
        user = user_store.set_role(args.user_id, args.role)
    finally:
        user_store.close()
    print(f"  User {user.id} ({user.email}) is now {user.role.name}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="socialfeed",
        description="Social feed backend with rate limiting, email activation and role-gated posts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  DATABASE_URL=postgresql://feed:pw@localhost/feed python main.py init-db
  python main.py set-role 1 admin
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(handler=_serve)

    init_db = sub.add_parser("init-db", help="Create all tables and seed the default roles")
    init_db.set_defaults(handler=_init_db)

    set_role = sub.add_parser("set-role", help="Assign a role (user, moderator, admin) to a user")
    set_role.add_argument("user_id", type=int, help="Numeric user id")
    set_role.add_argument("role", help="Role name")
    set_role.set_defaults(handler=_set_role)

    args = parser.parse_args()
    if not getattr(args, "handler", None):
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(args.handler(args))
    except SocialFeedError as exc:
        print(f"  [!] {exc.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
