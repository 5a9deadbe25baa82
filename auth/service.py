"""
auth/service.py -- Composition root for the auth core.

AuthService owns everything that lives for the whole process: the Database,
the repositories, the password service, the HMAC encrypter, the JWT manager,
the group registry, the action instances, the event bus and the mailer.
for_request(ctx) wires a fresh, request-scoped Auth facade on top of them.

Every User loaded through self.users passes through bind_user(), which
attaches the per-user TokenManager and PermissionEvaluator. That is what
makes user.can(...) and user.generate_access_token(...) work anywhere.

Pattern: Composition root. Settings are read once by the caller
(get_settings() in api/main.py / main.py) and passed in; nothing below this
object looks configuration up on its own.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from core.clock import Clock, system_clock
from core.config import Settings
from core.events import EventBus
from core.exceptions import ConfigurationError
from core.models import User
from auth.actions import ACTIONS, Action, EmailActivator
from auth.authentication import Auth, Authentication
from auth.authenticators import (
    AccessTokensAuthenticator,
    HmacSha256Authenticator,
    JwtAuthenticator,
    SessionAuthenticator,
)
from auth.context import RequestContext
from auth.hmac_encrypter import HmacEncrypter
from auth.jwt_manager import JwtManager
from auth.mail import LoggingMailer, Mailer
from auth.remember import RememberMe
from auth.tokens import TokenManager
from authz.evaluator import PermissionEvaluator
from authz.groups import Groups
from passwords.service import Passwords
from passwords.validators import build_validators
from store.database import Database
from store.identities import IdentityStore
from store.logins import LoginStore
from store.memberships import MembershipStore
from store.remember import RememberStore
from store.schema import auth_logins, auth_token_logins
from store.users import UserStore

logger = logging.getLogger("gatehouse.service")


class AuthService:
    def __init__(
        self,
        settings: Settings,
        db: Optional[Database] = None,
        clock: Clock = system_clock,
        mailer: Optional[Mailer] = None,
        events: Optional[EventBus] = None,
        http_session: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.db = db or Database(settings.database_url)
        self.events = events or EventBus()
        self.mailer = mailer or LoggingMailer()

        self.encrypter = HmacEncrypter(settings.tokens)
        self.passwords = Passwords(settings, build_validators(settings, session=http_session))
        self.groups = Groups(settings.groups)
        self.groups.validate_default_group()
        self.jwt = JwtManager(settings.jwt, clock)

        self.identities = IdentityStore(self.db, clock, self.encrypter)
        self.users = UserStore(self.db, clock, binder=self.bind_user)
        self.logins = LoginStore(self.db, clock, auth_logins)
        self.token_logins = LoginStore(self.db, clock, auth_token_logins)
        self.remember_store = RememberStore(self.db, clock)
        self.group_store = MembershipStore(self.db, "group", clock)
        self.permission_store = MembershipStore(self.db, "permission", clock)

        self.actions = self._build_actions()

    def _build_actions(self) -> dict[str, Action]:
        """Instantiate the configured actions, register action first."""
        actions: dict[str, Action] = {}
        for alias in (self.settings.actions.register, self.settings.actions.login):
            if alias is None or alias in actions:
                continue
            action_class = ACTIONS.get(alias)
            if action_class is None:
                raise ConfigurationError(f"Unknown action {alias!r}. Known actions: {sorted(ACTIONS)!r}")
            actions[alias] = action_class(self.identities, self.users, self.mailer, self.clock)
        return actions

    def bind_user(self, user: User) -> None:
        user.tokens = TokenManager(user, self.identities)
        user.authz = PermissionEvaluator(user, self.groups, self.group_store, self.permission_store)

    def is_activated(self, user: User) -> bool:
        """Activation only gates login when registration runs the email activator."""
        if self.settings.actions.register != EmailActivator.alias:
            return True
        return user.active

    def for_request(self, ctx: RequestContext) -> Auth:
        settings = self.settings
        common = (self.users, ctx, settings, self.events)

        def session() -> SessionAuthenticator:
            return SessionAuthenticator(
                *common,
                self.logins,
                self.clock,
                passwords=self.passwords,
                identities=self.identities,
                remember_me=RememberMe(self.remember_store, settings.session, self.clock),
                actions=self.actions,
            )

        def tokens() -> AccessTokensAuthenticator:
            return AccessTokensAuthenticator(
                *common,
                self.token_logins,
                self.clock,
                record_level=settings.tokens.record_login_attempt,
                identities=self.identities,
            )

        def hmac() -> HmacSha256Authenticator:
            return HmacSha256Authenticator(
                *common,
                self.token_logins,
                self.clock,
                record_level=settings.tokens.record_login_attempt,
                identities=self.identities,
                encrypter=self.encrypter,
            )

        def jwt() -> JwtAuthenticator:
            return JwtAuthenticator(
                *common,
                self.token_logins,
                self.clock,
                record_level=settings.jwt.record_login_attempt,
                manager=self.jwt,
            )

        factories = {"session": session, "tokens": tokens, "hmac": hmac, "jwt": jwt}
        return Auth(Authentication(settings, factories), self.users, settings)

    def close(self) -> None:
        self.db.close()
