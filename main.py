#!/usr/bin/env python3
"""
Shopfront -- account and session administration.

Usage:
  python main.py create-user admin1 admin@example.com --role admin
  python main.py create-user alice1 alice@example.com --password pass123
  python main.py set-role alice1 admin
  python main.py list-users
  python main.py sessions alice1
  python main.py revoke-sessions alice1
  python main.py serve --host 0.0.0.0 --port 4000

Environment variables:
  SECRET_KEY     Required. Signing key for session tokens (>= 32 characters).
  DATABASE_URL   Optional. Defaults to sqlite:///shopfront_auth.db.

Exit status is 0 on success and 1 on any failure.
"""

import argparse
import getpass
import logging
import sys

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.models import RegisterRequest
from auth.models import PasswordValidationError, Role, User
from auth.passwords import PasswordHasher, apply_password
from auth.store import UserStore
from core.config import Settings, get_settings

logger = logging.getLogger("shopfront.cli")


def _open_store(settings: Settings) -> UserStore:
    return UserStore(settings.database_url, timeout=settings.store_timeout_seconds, echo=settings.debug)


def _require_user(store: UserStore, account: str) -> User | None:
    user = store.find_user(account=account)
    if user is None:
        print(f"  [!] No account named '{account}'.")
    return user


def cmd_create_user(args: argparse.Namespace, settings: Settings, store: UserStore) -> int:
    password = args.password or getpass.getpass("Password (4-20 characters): ")
    try:
        body = RegisterRequest(account=args.account, email=args.email, password=password)
    except ValidationError as e:
        err = e.errors()[0]
        print(f"  [!] Invalid {err['loc'][0]}: {err['msg']}")
        return 1
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    try:
        user = apply_password(User(account=body.account, email=str(body.email), role=Role(args.role)), password, hasher)
    except PasswordValidationError as e:
        print(f"  [!] {e}")
        return 1
    try:
        saved = store.save_user(user)
    except IntegrityError:
        print(f"  [!] Account '{args.account}' or email '{args.email}' is already registered.")
        return 1
    print(f"  Created {saved.role.value} '{saved.account}' (id={saved.id}).")
    return 0


def cmd_set_role(args: argparse.Namespace, settings: Settings, store: UserStore) -> int:
    user = _require_user(store, args.account)
    if user is None:
        return 1
    user.role = Role(args.role)
    store.save_user(user)
    print(f"  '{user.account}' is now {user.role.value}.")
    return 0


def cmd_list_users(args: argparse.Namespace, settings: Settings, store: UserStore) -> int:
    users = store.list_users()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'ID':>4}  {'ACCOUNT':<20}  {'ROLE':<5}  {'SESSIONS':>8}  EMAIL")
    for u in users:
        print(f"  {u.id:>4}  {u.account:<20}  {u.role.value:<5}  {len(u.tokens):>8}  {u.email}")
    return 0


def cmd_sessions(args: argparse.Namespace, settings: Settings, store: UserStore) -> int:
    user = _require_user(store, args.account)
    if user is None:
        return 1
    print(f"  '{user.account}' has {len(user.tokens)} live session(s), oldest first:")
    for i, token in enumerate(user.tokens, start=1):
        # Tokens are bearer credentials -- show only enough to tell them apart.
        print(f"  {i:>3}. ...{token[-12:]}")
    return 0


def cmd_revoke_sessions(args: argparse.Namespace, settings: Settings, store: UserStore) -> int:
    user = _require_user(store, args.account)
    if user is None:
        return 1
    removed = store.revoke_all(user.id)
    logger.info("Revoked %d session(s) for user_id=%s from CLI", removed, user.id)
    print(f"  Revoked {removed} session(s) for '{user.account}'.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shopfront",
        description="Shopfront account and session administration.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Create an account.")
    p.add_argument("account", help="4-20 letters or digits.")
    p.add_argument("email")
    p.add_argument("--password", help="Prompted for if omitted.")
    p.add_argument("--role", choices=[r.value for r in Role], default=Role.USER.value)
    p.set_defaults(handler=cmd_create_user)

    p = sub.add_parser("set-role", help="Change an account's role.")
    p.add_argument("account")
    p.add_argument("role", choices=[r.value for r in Role])
    p.set_defaults(handler=cmd_set_role)

    p = sub.add_parser("list-users", help="List all accounts.")
    p.set_defaults(handler=cmd_list_users)

    p = sub.add_parser("sessions", help="Show an account's live sessions.")
    p.add_argument("account")
    p.set_defaults(handler=cmd_sessions)

    p = sub.add_parser("revoke-sessions", help="Sign an account out everywhere.")
    p.add_argument("account")
    p.set_defaults(handler=cmd_revoke_sessions)

    p = sub.add_parser("serve", help="Run the API with uvicorn.")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=4000)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(handler=None)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"  [!] Configuration error: {e.errors()[0]['msg']}")
        return 1

    store = _open_store(settings)
    try:
        return args.handler(args, settings, store)
    except SQLAlchemyError as e:
        print(f"  [!] Database error: {e.__class__.__name__}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
