"""
auth/authentication.py -- Authenticator registry and the Auth facade.

AUTHENTICATORS maps every alias the configuration may name to its class.
Authentication resolves aliases to instances for one request, building each
lazily through the factory the composition root supplied and caching it, so
"session" asked for twice in one request is the same object (and the same
memoized user state).

Auth is the object route handlers talk to. It forwards the authenticator
contract explicitly to the selected strategy and adds the request-level
helpers: user(), id(), authenticate() and chain().
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from core.config import Settings
from core.exceptions import AuthLogicError, AuthenticationError
from core.messages import message
from core.models import User
from core.result import Result
from auth.authenticators import (
    AccessTokensAuthenticator,
    Authenticator,
    HmacSha256Authenticator,
    JwtAuthenticator,
    SessionAuthenticator,
)
from store.users import UserStore

AUTHENTICATORS: dict[str, type[Authenticator]] = {
    SessionAuthenticator.alias: SessionAuthenticator,
    AccessTokensAuthenticator.alias: AccessTokensAuthenticator,
    HmacSha256Authenticator.alias: HmacSha256Authenticator,
    JwtAuthenticator.alias: JwtAuthenticator,
}

Factory = Callable[[], Authenticator]


class Authentication:
    def __init__(self, settings: Settings, factories: dict[str, Factory]) -> None:
        self.settings = settings
        self.factories = factories
        self._instances: dict[str, Authenticator] = {}

    def factory(self, alias: Optional[str] = None) -> Authenticator:
        alias = alias or self.settings.default_authenticator
        if alias in self._instances:
            return self._instances[alias]
        if alias not in self.settings.authenticators or alias not in self.factories:
            raise AuthenticationError(message("unknownAuthenticator", alias=alias), code="unknownAuthenticator")
        self._instances[alias] = self.factories[alias]()
        return self._instances[alias]


class Auth:
    """Request-scoped facade over the configured authenticators.

    Usage:
        auth = service.for_request(ctx)
        result = auth.attempt({"email": "a@example.com", "password": "..."})
        auth.set_authenticator("tokens").user()
    """

    def __init__(self, authentication: Authentication, users: UserStore, settings: Settings) -> None:
        self.authentication = authentication
        self.users = users
        self.settings = settings
        self.alias: Optional[str] = None

    def set_authenticator(self, alias: Optional[str] = None) -> Auth:
        if alias:
            self.alias = alias
        return self

    def get_authenticator(self) -> Authenticator:
        return self.authentication.factory(self.alias)

    def get_provider(self) -> UserStore:
        return self.users

    def user(self) -> Optional[User]:
        authenticator = self.get_authenticator()
        return authenticator.get_user() if authenticator.logged_in() else None

    def id(self) -> Optional[int]:
        user = self.user()
        return user.id if user is not None else None

    def authenticate(self, credentials: dict[str, Any]) -> Result:
        return self.get_authenticator().attempt(credentials)

    def chain(self) -> Optional[Authenticator]:
        """Select the first authenticator in the configured chain that is logged in."""
        for alias in self.settings.authentication_chain:
            authenticator = self.authentication.factory(alias)
            if authenticator.logged_in():
                self.alias = alias
                return authenticator
        return None

    # ------------------------------------------------------------------
    # Forwarded authenticator contract
    # ------------------------------------------------------------------

    def attempt(self, credentials: dict[str, Any]) -> Result:
        return self.get_authenticator().attempt(credentials)

    def check(self, credentials: dict[str, Any]) -> Result:
        return self.get_authenticator().check(credentials)

    def login(self, user: User) -> None:
        self.get_authenticator().login(user)

    def login_by_id(self, user_id: int) -> None:
        self.get_authenticator().login_by_id(user_id)

    def logout(self) -> None:
        self.get_authenticator().logout()

    def logged_in(self) -> bool:
        return self.get_authenticator().logged_in()

    def get_user(self) -> Optional[User]:
        return self.get_authenticator().get_user()

    def record_active_date(self) -> None:
        self.get_authenticator().record_active_date()

    def session(self) -> SessionAuthenticator:
        """The session authenticator, for the session-only operations (actions, remember-me)."""
        authenticator = self.authentication.factory(SessionAuthenticator.alias)
        if not isinstance(authenticator, SessionAuthenticator):
            raise AuthLogicError(f"{type(authenticator).__name__} is registered as the session authenticator.")
        return authenticator
