"""
auth/authenticators/session.py -- Stateful session authenticator.

User state machine, computed once per request by _check_user_state():

  UNKNOWN -> ANONYMOUS   no user id in the session and no usable remember-me
                         cookie, or the session's user no longer exists
          -> PENDING     user id in the session plus a pending auth_action
          -> LOGGED_IN   user id in the session, no pending action, or a
                         valid remember-me cookie (rotated on use)

Session layout: everything lives under settings.session.field as a dict:
  {"id": <user id>, "auth_action": <action alias>, "auth_action_message": <text>}

Security:
  [C1] Unknown identifiers still pay for a full hash verify (Passwords.burn)
       and share the generic badAttempt reason, so neither timing nor wording
       reveals whether an account exists.

  [H2] start_login() refuses to run if the session already carries a user id.
       Logging a second account into a live session would silently reuse the
       first user's session data. It also rotates the session nonce and sets
       no_cache so the HTTP layer sends Cache-Control: no-store [M5].

  [H3] Remember-me rotation is compare-and-swap. Losing the race means the
       cookie was replayed; the request stays anonymous and the cookie is
       cleared.
"""

from __future__ import annotations

import hmac
import logging
from enum import Enum
from typing import Any, Optional

from core.exceptions import AuthLogicError
from core.models import ID_TYPE_EMAIL_PASSWORD, ID_TYPE_USERNAME, User, UserIdentity
from core.result import Result
from auth.actions import Action
from auth.authenticators.base import Authenticator
from auth.remember import RememberMe
from passwords.service import Passwords
from store.identities import IdentityStore

logger = logging.getLogger("gatehouse.auth.session")

_ACTION_KEY = "auth_action"
_ACTION_MESSAGE_KEY = "auth_action_message"


class UserState(Enum):
    UNKNOWN = 0
    ANONYMOUS = 1
    PENDING = 2
    LOGGED_IN = 3


class SessionAuthenticator(Authenticator):
    alias = "session"

    def __init__(
        self,
        *args: Any,
        passwords: Passwords,
        identities: IdentityStore,
        remember_me: RememberMe,
        actions: dict[str, Action],
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.passwords = passwords
        self.identities = identities
        self.remember_me = remember_me
        # Ordered candidates: the register action first, then the login one.
        self.actions = actions
        self._state = UserState.UNKNOWN
        self._should_remember = False

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def remember(self, should_remember: bool = True) -> SessionAuthenticator:
        self._should_remember = should_remember
        return self

    def attempt(self, credentials: dict[str, Any]) -> Result:
        """Check credentials and, on success, log the user in or park them on a pending action."""
        result = self.check(credentials)

        if not result.is_ok():
            self._record_credentials_attempt(credentials, False)
            self.user = None
            public = {k: v for k, v in credentials.items() if k != "password"}
            logger.warning("Failed login for %s from %s: %s", public, self.ctx.ip_address, result.code)
            self.events.emit("failedLogin", public)
            return result

        user: User = result.extra_info
        if user.is_banned():
            self._record_credentials_attempt(credentials, False, user.id)
            self.user = None
            logger.warning("Blocked login for banned user %s", user.id)
            return Result.fail("bannedUser", reason=user.get_ban_message())

        self.user = user

        email_identity = self.identities.get_identity_by_type(user, ID_TYPE_EMAIL_PASSWORD)
        if email_identity is not None:
            self.identities.touch(email_identity.id)

        self._set_auth_action()
        self.start_up_action("login", user)
        self.start_login(user)
        self._record_credentials_attempt(credentials, True, user.id)
        self._issue_remember_me_token()

        if not self.has_action():
            self.complete_login(user)

        return result

    def check(self, credentials: dict[str, Any]) -> Result:
        password = credentials.get("password")
        if not password or len(credentials) < 2:
            return Result.fail("badAttempt")

        identifiers = {k: v for k, v in credentials.items() if k != "password"}
        unknown = set(identifiers) - set(self.settings.valid_fields)
        if unknown:
            raise AuthLogicError(f"Login fields {sorted(unknown)!r} are not in valid_fields {self.settings.valid_fields!r}.")

        user = self.users.find_by_credentials(identifiers)
        if user is None or not user.password_hash:
            self.passwords.burn(password)
            return Result.fail("badAttempt")

        if not self.passwords.verify(password, user.password_hash):
            return Result.fail("badAttempt")

        # Hash algorithm or cost changed since this password was stored.
        if self.passwords.needs_rehash(user.password_hash):
            user.password_hash = self.passwords.hash(password)
            self.users.save_email_identity(user)

        return Result.ok(user)

    def _record_credentials_attempt(self, credentials: dict[str, Any], success: bool, user_id: Optional[int] = None) -> None:
        fields = [f for f in self.settings.valid_fields if f in credentials]
        field = fields[0] if fields else "email"

        if field not in ("email", "username"):
            id_type = field
        elif "email" not in credentials and "username" in credentials:
            id_type = ID_TYPE_USERNAME
        else:
            id_type = ID_TYPE_EMAIL_PASSWORD

        self.record_login_attempt(id_type, str(credentials.get(field) or ""), success, user_id)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def logged_in(self) -> bool:
        self._check_user_state()
        return self._state is UserState.LOGGED_IN

    def is_pending(self) -> bool:
        self._check_user_state()
        return self._state is UserState.PENDING

    def is_anonymous(self) -> bool:
        self._check_user_state()
        return self._state is UserState.ANONYMOUS

    def get_user(self) -> Optional[User]:
        self._check_user_state()
        return self.user if self._state is UserState.LOGGED_IN else None

    def get_pending_user(self) -> Optional[User]:
        self._check_user_state()
        return self.user if self._state is UserState.PENDING else None

    def get_pending_message(self) -> str:
        self._check_user_state()
        return self._session_key(_ACTION_MESSAGE_KEY) or ""

    def _check_user_state(self) -> None:
        if self._state is not UserState.UNKNOWN:
            return

        user_id = self._session_key("id")
        if user_id is not None:
            self.user = self.users.find_by_id(user_id)
            if self.user is None:
                # Account deleted while the session was alive.
                self._state = UserState.ANONYMOUS
                self._remove_session_user_info()
                return
            if self._session_key(_ACTION_KEY):
                self._state = UserState.PENDING
                return
            self._state = UserState.LOGGED_IN
            return

        if self.settings.session.allow_remembering:
            if self._check_remember_me():
                self._set_auth_action()
            return

        self._state = UserState.ANONYMOUS

    def _check_remember_me(self) -> bool:
        raw = self.ctx.cookie(self.remember_me.cookie_name)
        if raw is None:
            self._state = UserState.ANONYMOUS
            return False

        token = self.remember_me.verify(raw)
        if token is None:
            self._state = UserState.ANONYMOUS
            self._remove_remember_cookie()
            return False

        user = self.users.find_by_id(token.user_id)
        if user is None or user.is_banned():
            self._state = UserState.ANONYMOUS
            self.remember_me.purge_user(token.user_id)
            self._remove_remember_cookie()
            return False

        rotated = self.remember_me.rotate(token)
        if rotated is None:
            self._state = UserState.ANONYMOUS
            self._remove_remember_cookie()
            return False

        self.start_login(user)
        self._set_remember_cookie(rotated)
        self._state = UserState.LOGGED_IN
        return True

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def start_up_action(self, event: str, user: User) -> bool:
        """Create the identity for the action configured on event ("login" / "register")."""
        alias = getattr(self.settings.actions, event)
        if alias is None:
            return False

        if self.user is None:
            self.user = user
        self.actions[alias].create_identity(user)
        self._set_auth_action()
        return True

    def get_action(self) -> Optional[Action]:
        alias = self._session_key(_ACTION_KEY)
        if alias is None:
            return None
        return self.actions.get(alias)

    def has_action(self, user_id: Optional[int] = None) -> bool:
        """True if a pending action exists.

        Pass user_id for a visitor who is not logged in yet (the magic-link
        flow). If that user has action identities, the session is put into
        the pending state for them.
        """
        if user_id is not None:
            user = self.users.find_by_id(user_id)
            if user is not None and self._identities_for_action(user):
                self.user = user
                self.ctx.session.regenerate()
                self._set_session_key("id", user.id)
                self._set_auth_action()
                return True

        if self._session_key(_ACTION_KEY):
            return True

        return self._set_auth_action()

    def check_action(self, identity: Optional[UserIdentity], token: str) -> bool:
        """Compare a submitted action code. Success deletes the identity and completes the login."""
        user = self.user if (self.logged_in() or self.is_pending()) else None
        if user is None:
            raise AuthLogicError("Cannot get the user for the pending action.")
        if user.is_banned():
            self._remove_session_user_info()
            self.user = None
            self._state = UserState.ANONYMOUS
            return False

        if identity is None or token == "":
            return False
        if not hmac.compare_digest(token.encode("utf-8"), identity.secret.encode("utf-8")):
            return False

        self.identities.delete_identities_by_type(user, identity.type)
        self._remove_session_key(_ACTION_KEY)
        self._remove_session_key(_ACTION_MESSAGE_KEY)

        self.user = user
        self.complete_login(user)
        return True

    def _set_auth_action(self) -> bool:
        """Put the first action with a stored identity into the session. Returns True if one was found."""
        if self.user is None:
            return False

        for alias, action in self.actions.items():
            identity = self.identities.get_identity_by_type(self.user, action.get_type())
            if identity is not None:
                self._state = UserState.PENDING
                self._set_session_key(_ACTION_KEY, alias)
                self._set_session_key(_ACTION_MESSAGE_KEY, identity.extra)
                return True

        return False

    def _identities_for_action(self, user: User) -> list[UserIdentity]:
        return self.identities.get_identities_by_types(user, [a.get_type() for a in self.actions.values()])

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def start_login(self, user: User) -> None:
        user_id = self._session_key("id")
        if user_id is not None:
            raise AuthLogicError(
                "The session already carries a user, so someone is logged in or pending login. "
                "Log out or clear the session before logging in another account. "
                f"user_id: {user_id}"
            )

        self.user = user
        self.ctx.session.regenerate()
        self._set_session_key("id", user.id)
        self.ctx.no_cache = True

    def complete_login(self, user: User) -> None:
        self._state = UserState.LOGGED_IN
        logger.info("User %s logged in", user.id)
        self.events.emit("login", user)

    def login(self, user: User) -> None:
        """Log user in directly. Refuses when an action is pending; use start_login() for that."""
        self.user = user

        if self._identities_for_action(user):
            raise AuthLogicError(
                "The user has identities for an action, so the login cannot be completed. "
                f"Use start_login() to begin a login with an auth action. user_id: {user.id}"
            )
        if self._session_key(_ACTION_KEY):
            raise AuthLogicError(
                f"The session has a pending auth action, so the login cannot be completed. user_id: {user.id}"
            )

        self.start_login(user)
        self._issue_remember_me_token()
        self.complete_login(user)

    def logout(self) -> None:
        self._check_user_state()
        if self.user is None:
            return

        # Clear every key, not just ours, so flash / temp data goes too.
        self.ctx.session.clear()
        self.ctx.session.regenerate()

        self.remember_me.purge_user(self.user.id)
        if self.ctx.cookie(self.remember_me.cookie_name) is not None:
            self._remove_remember_cookie()

        logger.info("User %s logged out", self.user.id)
        self.events.emit("logout", self.user)

        self.user = None
        self._state = UserState.ANONYMOUS

    def forget(self, user: Optional[User] = None) -> None:
        """Drop every remember-me token of user (default: the current one)."""
        user = user or self.user
        if user is None:
            return
        self.remember_me.purge_user(user.id)

    # ------------------------------------------------------------------
    # Remember-me cookie
    # ------------------------------------------------------------------

    def _issue_remember_me_token(self) -> None:
        cookie_name = self.remember_me.cookie_name
        if self._should_remember and self.settings.session.allow_remembering:
            self._set_remember_cookie(self.remember_me.issue(self.user.id))
            self._should_remember = False
        elif self.ctx.cookie(cookie_name) is not None:
            self.remember_me.discard(self.ctx.cookie(cookie_name))
            self._remove_remember_cookie()

        self.remember_me.maybe_purge()

    def _set_remember_cookie(self, raw: str) -> None:
        self.ctx.set_cookie(
            self.remember_me.cookie_name,
            raw,
            max_age=self.settings.session.remember_length,
            secure=self.settings.session.secure_cookies,
        )

    def _remove_remember_cookie(self) -> None:
        self.ctx.delete_cookie(self.remember_me.cookie_name)

    # ------------------------------------------------------------------
    # Session storage
    # ------------------------------------------------------------------

    def _session_info(self) -> dict[str, Any]:
        return dict(self.ctx.session.get(self.settings.session.field) or {})

    def _session_key(self, key: str) -> Any:
        return self._session_info().get(key)

    def _set_session_key(self, key: str, value: Any) -> None:
        info = self._session_info()
        info[key] = value
        self.ctx.session.set(self.settings.session.field, info)

    def _remove_session_key(self, key: str) -> None:
        info = self._session_info()
        info.pop(key, None)
        self.ctx.session.set(self.settings.session.field, info)

    def _remove_session_user_info(self) -> None:
        self.ctx.session.remove(self.settings.session.field)
