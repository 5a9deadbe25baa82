"""
auth/magic_link.py -- Passwordless login by emailed single-use link.

request(): replaces any earlier magic-link identity of the user with a new
20-character token that expires after magic_link_lifetime seconds, and mails
the link. An unknown address gets the same answer as a known one.

verify(): the identity is deleted before anything else, so a token works at
most once even if it turns out to be expired. A user with a pending action
(2FA, activation) is parked in the pending state instead of logged in.
Every outcome lands in the auth_logins audit table as id_type "magic-link".
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional

from core.clock import ensure_utc
from core.messages import message
from core.models import ID_TYPE_MAGIC_LINK
from core.result import Result
from auth.authentication import Auth
from auth.context import RequestContext
from auth.mail import Message
from auth.service import AuthService

logger = logging.getLogger("gatehouse.magic_link")

VERIFY_PATH = "/api/v1/auth/magic-link/verify"


def generate_token() -> str:
    return secrets.token_hex(10)


class MagicLinks:
    def __init__(self, service: AuthService) -> None:
        self.service = service
        self.settings = service.settings

    def request(self, ctx: RequestContext, email: str) -> Result:
        if not self.settings.allow_magic_link_logins:
            return Result.fail("magicLinkDisabled")

        user = self.service.users.find_by_credentials({"email": email}) if email else None
        if user is None:
            logger.info("Magic link requested for unknown address")
            return Result.ok()

        identities = self.service.identities
        identities.delete_identities_by_type(user, ID_TYPE_MAGIC_LINK)
        token = identities.create_code_identity(
            user,
            ID_TYPE_MAGIC_LINK,
            generate_token,
            expires=self.service.clock() + timedelta(seconds=self.settings.magic_link_lifetime),
        )

        body = (
            f"Use this link to log in: {VERIFY_PATH}?token={token}\n\n"
            f"IP address: {ctx.ip_address or 'unknown'}\n"
            f"Device: {ctx.user_agent or 'unknown'}\n"
            f"Date: {self.service.clock().isoformat(timespec='seconds')}\n"
        )
        self.service.mailer.send(Message(to=user.email or "", subject=message("magicLinkSubject"), body=body))
        return Result.ok()

    def verify(self, auth: Auth, token: Optional[str]) -> Result:
        if not self.settings.allow_magic_link_logins:
            return Result.fail("magicLinkDisabled")

        session = auth.session()
        identifier = token or ""
        identity = self.service.identities.get_identity_by_secret(ID_TYPE_MAGIC_LINK, token) if token else None

        if identity is None:
            session.record_login_attempt(ID_TYPE_MAGIC_LINK, identifier, False)
            self.service.events.emit("failedLogin", {"magicLinkToken": token})
            return Result.fail("magicTokenNotFound")

        self.service.identities.delete_identity(identity.id)

        if identity.expires is None or ensure_utc(identity.expires) <= self.service.clock():
            session.record_login_attempt(ID_TYPE_MAGIC_LINK, identifier, False, identity.user_id)
            self.service.events.emit("failedLogin", {"magicLinkToken": token})
            return Result.fail("magicLinkExpired")

        user = self.service.users.find_by_id(identity.user_id)
        if user is None:
            return Result.fail("invalidUser")
        if user.is_banned():
            session.record_login_attempt(ID_TYPE_MAGIC_LINK, identifier, False, user.id)
            return Result.fail("bannedUser", reason=user.get_ban_message())

        if session.has_action(user.id):
            return Result.ok(session.get_pending_user())

        session.login(user)
        session.record_login_attempt(ID_TYPE_MAGIC_LINK, identifier, True, user.id)

        session.ctx.session.set("magicLogin", True)
        self.service.events.emit("magicLogin", user)
        return Result.ok(user)
