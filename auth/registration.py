"""
auth/registration.py -- New account registration.

Registrar.register() runs the whole sign-up flow against the session
authenticator of the current request:

  1. refuse when registration is disabled or someone is already logged in
  2. refuse an email address that is already registered, in any letter case
  3. validate the password through the password validator chain
  4. create the user and its email_password identity
  5. add the default group and fire "register"
  6. start the login; run the register action if one is configured,
     otherwise activate the account and complete the login

The returned Result carries the new User in extra_info on success. When an
action is pending, the session authenticator reports is_pending() and the
caller should send the user to the action's show step.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError

from core.models import User
from core.result import Result
from auth.authentication import Auth
from auth.service import AuthService

logger = logging.getLogger("gatehouse.registration")


class Registrar:
    def __init__(self, service: AuthService) -> None:
        self.service = service
        self.settings = service.settings

    def register(self, auth: Auth, data: dict[str, Any]) -> Result:
        if not self.settings.allow_registration:
            return Result.fail("registerDisabled")

        session = auth.session()
        if session.logged_in() or session.is_pending():
            return Result.fail("alreadyLoggedIn")

        email = (data.get("email") or "").strip()
        password = data.get("password") or ""
        if not email:
            return Result.fail("invalidEmail")
        if self.service.users.find_by_credentials({"email": email}) is not None:
            return Result.fail("userExists")

        user = User(username=data.get("username") or None, email=email, password=password)
        result = self.service.passwords.check(password, user)
        if not result.is_ok():
            return result

        user.password_hash = self.service.passwords.hash(password)
        user.password = None
        try:
            self.service.users.create_user(user)
        except IntegrityError:
            logger.info("Registration rejected, username or email already taken")
            return Result.fail("userExists")

        user = self.service.users.find_by_id(user.id)
        user.add_group(self.service.groups.default_group)

        logger.info("Registered user %s", user.id)
        self.service.events.emit("register", user)

        session.start_login(user)
        if session.start_up_action("register", user):
            return Result.ok(user)

        self.service.users.activate(user)
        session.complete_login(user)
        return Result.ok(user)
