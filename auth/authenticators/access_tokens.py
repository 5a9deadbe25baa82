"""
auth/authenticators/access_tokens.py -- Bearer access-token authenticator.

Header: Authorization: Bearer <raw token>

The raw token is hashed (SHA-256) and looked up by hash; it is never stored
or logged. A token that has not been used for unused_token_lifetime seconds
is rejected as stale (oldToken) even though the row still exists. A token
with an explicit expires in the past is rejected too (expiredToken).

On success the token's last_used_at is touched and the token is bound onto
user.tokens, so user.token_can("scope") works for the rest of the request.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from core.clock import ensure_utc
from core.models import ID_TYPE_ACCESS_TOKEN, AccessToken, User
from core.result import Result
from auth.authenticators.base import StatelessAuthenticator, strip_scheme
from store.identities import IdentityStore


class AccessTokensAuthenticator(StatelessAuthenticator):
    alias = "tokens"
    id_type = ID_TYPE_ACCESS_TOKEN

    def __init__(self, *args: Any, identities: IdentityStore, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.identities = identities
        self.header_name = self.settings.tokens.tokens_header

    def check(self, credentials: dict[str, Any]) -> Result:
        raw = str(credentials.get("token") or "")
        if not raw:
            return self._no_token()
        raw = strip_scheme(raw, "Bearer")

        token = self.identities.get_access_token_by_raw_token(raw)
        if token is None:
            return Result.fail("badToken")

        now = self.clock()
        if token.expires is not None and ensure_utc(token.expires) <= now:
            return Result.fail("expiredToken")

        lifetime = timedelta(seconds=self.settings.tokens.unused_token_lifetime)
        if token.last_used_at is not None and ensure_utc(token.last_used_at) < now - lifetime:
            return Result.fail("oldToken")

        token.last_used_at = self.identities.touch(token.id)

        user = self.users.find_by_id(token.user_id)
        if user is None:
            return Result.fail("invalidUser")

        _bind(user, token)
        return Result.ok(user)

    def login_by_id(self, user_id: int) -> None:
        super().login_by_id(user_id)
        bearer = self.get_bearer_token()
        if bearer:
            token = self.identities.get_access_token(self.user, bearer)
            if token is not None:
                _bind(self.user, token)

    def get_bearer_token(self) -> str:
        header = self.ctx.header(self.header_name)
        return strip_scheme(header, "Bearer") if header else ""


def _bind(user: User, token: AccessToken) -> None:
    if user.tokens is not None:
        user.tokens.current_access_token = token
