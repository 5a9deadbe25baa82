"""
auth/actions.py -- Post-login / post-registration action pipeline.

An Action is a secondary step a user must complete after their primary
credentials check out: an emailed 2FA code on login, an emailed activation
code after registration. Which action runs on which event is configured in
Settings.actions (login / register), by alias:

  email_2fa       Email2FA
  email_activate  EmailActivator

While an action identity exists for the user, the session authenticator
keeps them in the PENDING state. Each action is driven through three steps,
mirroring the HTTP routes in api/routes/auth.py:

  show    create (or re-create) the code identity; describe the step
  handle  second step where the action has one (Email2FA: email the code)
  verify  compare the submitted code; on success finish the login

Codes are six digits, stored as-is, compared in constant time by
SessionAuthenticator.check_action(), and deleted as soon as they are used or
superseded.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from core.clock import Clock, system_clock
from core.exceptions import ActionNotAvailableError, AuthLogicError
from core.messages import message
from core.models import ID_TYPE_EMAIL_2FA, ID_TYPE_EMAIL_ACTIVATE, User, UserIdentity
from auth.mail import Mailer, Message
from store.identities import IdentityStore
from store.users import UserStore

if TYPE_CHECKING:
    from auth.authenticators.session import SessionAuthenticator
    from auth.context import RequestContext


def generate_code() -> str:
    return f"{secrets.randbelow(10**6):06d}"


@dataclass
class ActionOutcome:
    """What an action step produced. step names the next screen: show, verify or done."""

    step: str
    success: bool = True
    message: Optional[str] = None
    code: Optional[str] = None


class Action:
    alias = ""
    type = ""
    identity_name = ""
    pending_message = ""

    def __init__(self, identities: IdentityStore, users: UserStore, mailer: Mailer, clock: Clock = system_clock) -> None:
        self.identities = identities
        self.users = users
        self.mailer = mailer
        self.clock = clock

    def get_type(self) -> str:
        return self.type

    def create_identity(self, user: User) -> str:
        """Replace any previous code for this action and return the new one."""
        self.identities.delete_identities_by_type(user, self.type)
        return self.identities.create_code_identity(
            user,
            self.type,
            generate_code,
            name=self.identity_name,
            extra=message(self.pending_message),
        )

    def get_identity(self, user: User) -> Optional[UserIdentity]:
        return self.identities.get_identity_by_type(user, self.type)

    def show(self, auth: SessionAuthenticator, ctx: RequestContext) -> ActionOutcome:
        raise NotImplementedError

    def handle(self, auth: SessionAuthenticator, ctx: RequestContext, data: dict) -> ActionOutcome:
        raise NotImplementedError

    def verify(self, auth: SessionAuthenticator, ctx: RequestContext, data: dict) -> ActionOutcome:
        raise NotImplementedError

    def _pending_user(self, auth: SessionAuthenticator) -> User:
        user = auth.get_pending_user()
        if user is None:
            raise AuthLogicError("Unable to retrieve the user pending login.")
        return user

    def _mail_code(self, user: User, subject: str, code: str, ctx: RequestContext) -> None:
        body = (
            f"Your code is: {code}\n\n"
            f"IP address: {ctx.ip_address or 'unknown'}\n"
            f"Device: {ctx.user_agent or 'unknown'}\n"
            f"Date: {self.clock().isoformat(timespec='seconds')}\n"
        )
        self.mailer.send(Message(to=user.email or "", subject=subject, body=body))


class Email2FA(Action):
    alias = "email_2fa"
    type = ID_TYPE_EMAIL_2FA
    identity_name = "login"
    pending_message = "need2FA"

    def show(self, auth: SessionAuthenticator, ctx: RequestContext) -> ActionOutcome:
        self.create_identity(self._pending_user(auth))
        return ActionOutcome(step="show", message=message("need2FA"))

    def handle(self, auth: SessionAuthenticator, ctx: RequestContext, data: dict) -> ActionOutcome:
        user = self._pending_user(auth)
        email = data.get("email")
        if not email or email != user.email:
            return ActionOutcome(step="show", success=False, message="Invalid email address.", code="invalidEmail")

        identity = self.get_identity(user)
        if identity is None:
            return ActionOutcome(step="show", success=False, message=message("need2FA"), code="need2FA")

        self._mail_code(user, "Your authentication code", identity.secret, ctx)
        return ActionOutcome(step="verify")

    def verify(self, auth: SessionAuthenticator, ctx: RequestContext, data: dict) -> ActionOutcome:
        user = self._pending_user(auth)
        identity = self.get_identity(user)
        if not auth.check_action(identity, str(data.get("token") or "")):
            return ActionOutcome(step="verify", success=False, message=message("invalid2FAToken"), code="invalid2FAToken")
        return ActionOutcome(step="done")


class EmailActivator(Action):
    alias = "email_activate"
    type = ID_TYPE_EMAIL_ACTIVATE
    identity_name = "register"
    pending_message = "needVerification"

    def show(self, auth: SessionAuthenticator, ctx: RequestContext) -> ActionOutcome:
        user = self._pending_user(auth)
        if user.email is None:
            raise AuthLogicError(f"Email activation needs the user's email address. user_id: {user.id}")
        code = self.create_identity(user)
        self._mail_code(user, "Activate your account", code, ctx)
        return ActionOutcome(step="show", message=message("needVerification"))

    def handle(self, auth: SessionAuthenticator, ctx: RequestContext, data: dict) -> ActionOutcome:
        raise ActionNotAvailableError("Email activation has no handle step.")

    def verify(self, auth: SessionAuthenticator, ctx: RequestContext, data: dict) -> ActionOutcome:
        user = self._pending_user(auth)
        identity = self.get_identity(user)
        if not auth.check_action(identity, str(data.get("token") or "")):
            return ActionOutcome(
                step="show", success=False, message=message("invalidActivateToken"), code="invalidActivateToken"
            )
        self.users.activate(auth.get_user())
        return ActionOutcome(step="done")


ACTIONS: dict[str, type[Action]] = {
    Email2FA.alias: Email2FA,
    EmailActivator.alias: EmailActivator,
}
