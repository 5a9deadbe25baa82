"""
auth/authenticators/base.py -- Shared authenticator contract.

Every authenticator exposes the same operations, which is what lets the Auth
facade forward to whichever one is selected without reflection:

  attempt(credentials) -> Result   verify and log in
  check(credentials)   -> Result   verify only, extra_info carries the User
  logged_in()          -> bool
  login(user) / login_by_id(user_id) / logout()
  get_user()           -> User | None
  record_active_date()

Authenticators are request-scoped. The composition root (auth/service.py)
builds a fresh set per RequestContext, so instance attributes double as the
per-request memo and never leak across requests.

StatelessAuthenticator carries the bookkeeping shared by the token, HMAC and
JWT strategies: audit recording at the configured verbosity, the post-check
ban test and the memoized header-driven logged_in().
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Optional

from core.clock import Clock, system_clock
from core.config import RecordLoginAttempt, Settings
from core.events import EventBus
from core.exceptions import AuthenticationError, AuthLogicError, StoreError
from core.messages import message
from core.models import User
from core.result import Result
from auth.context import RequestContext
from store.logins import LoginStore
from store.users import UserStore

logger = logging.getLogger("gatehouse.auth")


class Authenticator:
    alias = ""

    def __init__(
        self,
        users: UserStore,
        ctx: RequestContext,
        settings: Settings,
        events: EventBus,
        logins: LoginStore,
        clock: Clock = system_clock,
    ) -> None:
        self.users = users
        self.ctx = ctx
        self.settings = settings
        self.events = events
        self.logins = logins
        self.clock = clock
        self.user: Optional[User] = None

    def attempt(self, credentials: dict[str, Any]) -> Result:
        raise NotImplementedError

    def check(self, credentials: dict[str, Any]) -> Result:
        raise NotImplementedError

    def logged_in(self) -> bool:
        raise NotImplementedError

    def login(self, user: User) -> None:
        self.user = user

    def login_by_id(self, user_id: int) -> None:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise AuthenticationError(message("invalidUser"), code="invalidUser")
        self.login(user)

    def logout(self) -> None:
        self.user = None

    def get_user(self) -> Optional[User]:
        return self.user

    def record_active_date(self) -> None:
        """Stamp the current user's last_active. Requires a logged-in user."""
        if self.user is None:
            raise AuthLogicError(f"{type(self).__name__}.record_active_date() requires a logged in user.")
        self.user.last_active = self.clock()
        self.users.update_active_date(self.user)

    def record_login_attempt(
        self,
        id_type: str,
        identifier: str,
        success: bool,
        user_id: Optional[int] = None,
    ) -> None:
        """Append an audit row. A failed write is logged, never raised."""
        try:
            self.logins.record(
                id_type,
                identifier,
                success,
                ip_address=self.ctx.ip_address,
                user_agent=self.ctx.user_agent,
                user_id=user_id,
            )
        except StoreError as exc:
            logger.error("Login audit write failed (%s, success=%s): %s", id_type, success, exc)


def audit_identifier(raw_token: str) -> str:
    """Audit-log form of a bearer credential. Raw tokens are never written."""
    return "sha256:" + hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def strip_scheme(value: str, scheme: str) -> str:
    if value.startswith(scheme):
        return value[len(scheme) :].strip()
    return value


class StatelessAuthenticator(Authenticator):
    """Base for strategies that re-derive the user from a header on every request."""

    id_type = ""
    header_name = "Authorization"

    def __init__(self, *args: Any, record_level: RecordLoginAttempt = RecordLoginAttempt.FAILURE, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.record_level = record_level
        self._attempted = False

    def request_credentials(self) -> dict[str, Any]:
        return {"token": self.ctx.header(self.header_name)}

    def attempt(self, credentials: dict[str, Any]) -> Result:
        identifier = audit_identifier(str(credentials.get("token") or ""))
        result = self.check(credentials)

        if not result.is_ok():
            if self.record_level >= RecordLoginAttempt.FAILURE:
                self.record_login_attempt(self.id_type, identifier, False)
            logger.warning("%s authentication failed from %s: %s", self.alias, self.ctx.ip_address, result.code)
            return result

        user: User = result.extra_info
        if user.is_banned():
            if self.record_level >= RecordLoginAttempt.FAILURE:
                self.record_login_attempt(self.id_type, identifier, False, user.id)
            logger.warning("%s authentication blocked for banned user %s", self.alias, user.id)
            self.user = None
            return Result.fail("bannedUser", reason=user.get_ban_message())

        self.login(user)

        if self.record_level == RecordLoginAttempt.ALL:
            self.record_login_attempt(self.id_type, identifier, True, user.id)

        return result

    def logged_in(self) -> bool:
        if self.user is not None:
            return True
        # One header check per request; a failure is not re-recorded.
        if self._attempted:
            return False
        self._attempted = True
        return self.attempt(self.request_credentials()).is_ok()

    def _no_token(self) -> Result:
        return Result.fail("noToken", reason=message("noToken", header=self.header_name))
