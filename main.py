#!/usr/bin/env python3
"""
gatehouse -- administration CLI.

Usage:
  python main.py hmac encrypt          encrypt every raw HMAC signing secret
  python main.py hmac decrypt          decrypt every HMAC signing secret back to raw
  python main.py hmac reencrypt        re-encrypt secrets with the current key (after rotation)

  python main.py user create --email a@example.com --password '...' [--username alice] [--group admin]
  python main.py user activate    --email a@example.com
  python main.py user deactivate  --email a@example.com
  python main.py user ban         --email a@example.com [--message "reason"]
  python main.py user unban       --email a@example.com
  python main.py user addgroup    --email a@example.com --group admin [--group beta]
  python main.py user force-reset --email a@example.com

Configuration comes from AUTH_* environment variables and .env, exactly as
for the API (see core/config.py).
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.exceptions import AuthError
from core.models import User
from auth.service import AuthService

logger = logging.getLogger("gatehouse.cli")


# ---------------------------------------------------------------------------
# hmac
# ---------------------------------------------------------------------------


def _hmac_encrypt(service: AuthService) -> int:
    encrypter = service.encrypter
    failures = 0
    for identity in service.identities.iter_hmac_identities():
        secret2 = identity.secret2 or ""
        if encrypter.is_encrypted(secret2):
            print(f"  id: {identity.id}, already encrypted, skipped.")
            continue
        try:
            service.identities.update_secret2(identity.id, encrypter.encrypt(secret2))
        except AuthError as e:
            print(f"  [!] id: {identity.id}, {e.message}")
            failures += 1
            continue
        print(f"  id: {identity.id}, encrypted.")
    return 1 if failures else 0


def _hmac_decrypt(service: AuthService) -> int:
    encrypter = service.encrypter
    for identity in service.identities.iter_hmac_identities():
        secret2 = identity.secret2 or ""
        if not encrypter.is_encrypted(secret2):
            print(f"  id: {identity.id}, not encrypted, skipped.")
            continue
        service.identities.update_secret2(identity.id, encrypter.decrypt(secret2))
        print(f"  id: {identity.id}, decrypted.")
    return 0


def _hmac_reencrypt(service: AuthService) -> int:
    encrypter = service.encrypter
    for identity in service.identities.iter_hmac_identities():
        secret2 = identity.secret2 or ""
        if encrypter.is_encrypted_with_current_key(secret2):
            print(f"  id: {identity.id}, already encrypted with the current key, skipped.")
            continue
        raw = encrypter.decrypt(secret2) if encrypter.is_encrypted(secret2) else secret2
        service.identities.update_secret2(identity.id, encrypter.encrypt(raw))
        print(f"  id: {identity.id}, re-encrypted.")
    return 0


_HMAC_ACTIONS = {
    "encrypt": _hmac_encrypt,
    "decrypt": _hmac_decrypt,
    "reencrypt": _hmac_reencrypt,
}


# ---------------------------------------------------------------------------
# user
# ---------------------------------------------------------------------------


def _find_user(service: AuthService, email: str) -> Optional[User]:
    user = service.users.find_by_credentials({"email": email})
    if user is None:
        print(f"  [!] No user with email '{email}'.")
    return user


def _user_create(service: AuthService, args: argparse.Namespace) -> int:
    user = User(username=args.username, email=args.email, password=args.password)
    result = service.passwords.check(args.password, user)
    if not result.is_ok():
        print(f"  [!] {result.reason}")
        if result.extra_info:
            print(f"      {result.extra_info}")
        return 1

    user.password_hash = service.passwords.hash(args.password)
    user.password = None
    user.active = True
    try:
        service.users.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' or that username already exists.")
        return 1

    user = service.users.find_by_id(user.id)
    user.add_group(*(args.group or [service.groups.default_group]))
    print(f"  Created user {user.id} ({user.email}) in groups: {', '.join(user.get_groups())}")
    return 0


def _user_update(service: AuthService, args: argparse.Namespace) -> int:
    user = _find_user(service, args.email)
    if user is None:
        return 1

    if args.action == "activate":
        service.users.activate(user)
    elif args.action == "deactivate":
        service.users.deactivate(user)
    elif args.action == "ban":
        service.users.ban(user, args.message)
    elif args.action == "unban":
        service.users.unban(user)
    elif args.action == "addgroup":
        user.add_group(*args.group)
    elif args.action == "force-reset":
        service.identities.set_force_reset(user, True)

    print(f"  {args.action}: user {user.id} ({user.email}) done.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="gatehouse administration: HMAC secret encryption and user management.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py hmac reencrypt
  python main.py user create --email admin@example.com --password 'correct horse battery' --group superadmin
  python main.py user ban --email spam@example.com --message "Spamming the forum"
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    hmac_parser = commands.add_parser("hmac", help="Encrypt / decrypt / re-encrypt HMAC signing secrets")
    hmac_parser.add_argument("action", choices=sorted(_HMAC_ACTIONS))

    user_parser = commands.add_parser("user", help="Create and manage users")
    user_actions = user_parser.add_subparsers(dest="action", required=True)

    create = user_actions.add_parser("create", help="Create an activated user")
    create.add_argument("--email", required=True)
    create.add_argument("--password", required=True)
    create.add_argument("--username", default=None)
    create.add_argument("--group", action="append", metavar="ALIAS", help="Group alias (repeatable; default group if omitted)")

    for name, help_text in (
        ("activate", "Activate a user"),
        ("deactivate", "Deactivate a user"),
        ("unban", "Lift a ban"),
        ("force-reset", "Require a password reset at next request"),
    ):
        sub = user_actions.add_parser(name, help=help_text)
        sub.add_argument("--email", required=True)

    ban = user_actions.add_parser("ban", help="Ban a user")
    ban.add_argument("--email", required=True)
    ban.add_argument("--message", default=None, help="Ban message shown on login")

    addgroup = user_actions.add_parser("addgroup", help="Add a user to groups")
    addgroup.add_argument("--email", required=True)
    addgroup.add_argument("--group", action="append", required=True, metavar="ALIAS")

    return parser


def main(argv: Optional[list[str]] = None, service: Optional[AuthService] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    owns_service = service is None
    if service is None:
        service = AuthService(get_settings())

    try:
        if args.command == "hmac":
            return _HMAC_ACTIONS[args.action](service)
        if args.action == "create":
            return _user_create(service, args)
        return _user_update(service, args)
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        if owns_service:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
