#!/usr/bin/env python3
"""
Marquee -- Movie catalog JSON API.

Usage:
  python main.py serve
  python main.py serve --port 4000 --env production --db-dsn postgresql://marquee:pw@localhost/marquee
  python main.py serve --limiter-rps 5 --limiter-burst 10
  python main.py serve --no-limiter
  python main.py serve --cors-trusted-origins http://localhost:9000 http://localhost:9001
  python main.py grant alice@example.com movies:write

Every flag overrides the matching environment variable (see core/config.py);
anything not given on the command line falls back to the environment or .env.

Environment variables:
  SECRET_KEY    Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL  SQLAlchemy URL. Defaults to sqlite:///marquee.db.
"""

import argparse
import json
import os
import sys


def _apply_overrides(args: argparse.Namespace) -> None:
    """Export CLI flags as environment variables before Settings is first built."""
    overrides = {
        "PORT": args.port,
        "ENV": args.env,
        "DATABASE_URL": args.db_dsn,
        "LIMITER_RPS": args.limiter_rps,
        "LIMITER_BURST": args.limiter_burst,
        "LIMITER_ENABLED": args.limiter_enabled,
    }
    for key, value in overrides.items():
        if value is not None:
            os.environ[key] = str(value).lower() if isinstance(value, bool) else str(value)
    if args.cors_trusted_origins is not None:
        os.environ["CORS_TRUSTED_ORIGINS"] = json.dumps(args.cors_trusted_origins)


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    from core.config import get_settings

    _apply_overrides(args)
    get_settings.cache_clear()
    settings = get_settings()
    uvicorn.run("api.main:app", host=args.host, port=settings.port, log_level="info")


def _grant(args: argparse.Namespace) -> int:
    from auth.models import PERMISSION_CODES
    from auth.store import PermissionStore, UserStore
    from core.config import get_settings
    from core.db import create_db_engine

    _apply_overrides(args)
    get_settings.cache_clear()
    settings = get_settings()

    unknown = [code for code in args.codes if code not in PERMISSION_CODES]
    if unknown:
        print(f"  [!] Unknown permission code(s): {', '.join(unknown)}. Known: {', '.join(PERMISSION_CODES)}")
        return 1

    engine = create_db_engine(settings.database_url, timeout=settings.db_timeout)
    try:
        user = UserStore(engine).get_by_email(args.email)
        if user is None:
            print(f"  [!] No user registered with email '{args.email}'.")
            return 1
        PermissionStore(engine).add_for_user(user.id, *args.codes)
    finally:
        engine.dispose()
    print(f"  Granted {', '.join(args.codes)} to {user.email} (id {user.id}).")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="marquee",
        description="Marquee movie catalog API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    # Shared by every subcommand, so they are accepted after the subcommand name.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--env", choices=["development", "staging", "production"], default=None)
    common.add_argument("--db-dsn", default=None, metavar="URL", help="SQLAlchemy database URL")

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", parents=[common], help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None, help="API server port (default: 4000)")
    serve.add_argument("--limiter-rps", type=float, default=None, help="Token bucket refill rate per client")
    serve.add_argument("--limiter-burst", type=int, default=None, help="Token bucket capacity per client")
    serve.add_argument(
        "--no-limiter",
        dest="limiter_enabled",
        action="store_false",
        default=None,
        help="Disable the global rate limiter",
    )
    serve.add_argument(
        "--cors-trusted-origins",
        nargs="*",
        default=None,
        metavar="ORIGIN",
        help="Origins allowed to make cross-origin requests",
    )

    grant = sub.add_parser("grant", parents=[common], help="Grant permission codes to a registered user")
    grant.add_argument("email")
    grant.add_argument("codes", nargs="+", metavar="CODE", help="e.g. movies:write")

    args = parser.parse_args()
    # Flags that only exist on one subcommand still need a value for _apply_overrides.
    for name in ("env", "db_dsn", "port", "limiter_rps", "limiter_burst", "limiter_enabled", "cors_trusted_origins"):
        if not hasattr(args, name):
            setattr(args, name, None)

    if args.command == "grant":
        return _grant(args)
    if args.command == "serve":
        _serve(args)
        return 0
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
