#!/usr/bin/env python3
"""
Gatehouse -- account registration, email verification, and session sign-in.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py invite a@example.com
  python main.py purge-expired

Environment variables (see core/config.py and .env):
  DEBUG          true for local development (auto-generated SECRET_KEY)
  SECRET_KEY     required in production, at least 32 characters
  DATABASE_URL   SQLAlchemy URL (default: SQLite file next to the code)
  REDIS_URL      session store; unset means a local SQLite file
  MAIL_API_URL   mail provider endpoint; unset means messages are only logged
"""

import argparse
import sys

import uvicorn

from auth.store import UserStore
from auth.verification import VerificationTokenStore, encode_token_id
from auth.workflow import AuthWorkflow
from core.config import Settings, get_settings
from core.database import Database
from core.errors import AppError
from mail.mailer import create_mailer
from sessions.manager import SessionManager
from sessions.store import create_session_store


def _serve(args: argparse.Namespace, settings: Settings) -> None:
    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


def _invite(args: argparse.Namespace, settings: Settings) -> None:
    db = Database(settings.database_url)
    session_store = create_session_store(settings)
    try:
        workflow = AuthWorkflow(
            UserStore(db, settings.default_page_size, settings.max_page_size),
            VerificationTokenStore(db, settings.verification_token_ttl_seconds),
            SessionManager(session_store, settings.secret_key),
            create_mailer(settings),
        )
        try:
            token = workflow.invite(args.email)
        except AppError as e:
            print(f"  [!] Invitation failed: {e.message}")
            sys.exit(1)
        print(f"  Verification email sent to {args.email}.")
        if settings.debug:
            print(f"  Token (debug only): {encode_token_id(token.id)}")
    finally:
        session_store.close()
        db.close()


def _purge_expired(args: argparse.Namespace, settings: Settings) -> None:
    db = Database(settings.database_url)
    session_store = create_session_store(settings)
    try:
        tokens = VerificationTokenStore(db, settings.verification_token_ttl_seconds).purge_expired()
        sessions = session_store.purge_expired()
    finally:
        session_store.close()
        db.close()
    print(f"  Removed {tokens} expired verification token(s) and {sessions} expired session(s).")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Email-verified registration and session sign-in service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py invite a@example.com
  DEBUG=true python main.py invite a@example.com   # also prints the token
  python main.py purge-expired
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(handler=_serve)

    invite = sub.add_parser("invite", help="Issue a verification token and email it")
    invite.add_argument("email", metavar="EMAIL", help="Address to invite")
    invite.set_defaults(handler=_invite)

    purge = sub.add_parser("purge-expired", help="Delete expired verification tokens and local sessions")
    purge.set_defaults(handler=_purge_expired)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        settings = get_settings()
    except ValueError as e:
        # pydantic's ValidationError subclasses ValueError
        print(f"  [!] Configuration error: {e}")
        sys.exit(1)

    args.handler(args, settings)


if __name__ == "__main__":
    main()
