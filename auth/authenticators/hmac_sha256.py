"""
auth/authenticators/hmac_sha256.py -- HMAC-SHA256 signed-request authenticator.

Header: Authorization: HMAC-SHA256 <key>:<hex signature>

  key        public key id (the identity's secret column)
  signature  hex HMAC-SHA256 of the raw request body, keyed with the token's
             signing secret

The signing secret is stored encrypted in secret2 and decrypted per request
by HmacEncrypter. Signatures are compared with hmac.compare_digest, so a
valid key with a tampered body fails exactly like an unknown key (badToken).
Stale tokens are rejected the same way as access tokens.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import timedelta
from typing import Any, Optional

from core.clock import ensure_utc
from core.models import ID_TYPE_HMAC_TOKEN, AccessToken, User
from core.result import Result
from auth.authenticators.base import StatelessAuthenticator, strip_scheme
from auth.hmac_encrypter import HmacEncrypter
from store.identities import IdentityStore

SCHEME = "HMAC-SHA256"


def sign(secret: str, body: bytes | str) -> str:
    """Hex HMAC-SHA256 of body under secret, as clients must compute it."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def split_token(value: str) -> tuple[Optional[str], Optional[str]]:
    key, _, signature = strip_scheme(value, SCHEME).partition(":")
    return (key or None), (signature or None)


class HmacSha256Authenticator(StatelessAuthenticator):
    alias = "hmac"
    id_type = ID_TYPE_HMAC_TOKEN

    def __init__(self, *args: Any, identities: IdentityStore, encrypter: HmacEncrypter, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.identities = identities
        self.encrypter = encrypter
        self.header_name = self.settings.tokens.hmac_header

    def request_credentials(self) -> dict[str, Any]:
        return {"token": self.ctx.header(self.header_name), "body": self.ctx.body}

    def check(self, credentials: dict[str, Any]) -> Result:
        raw = str(credentials.get("token") or "")
        if not raw:
            return self._no_token()

        key, signature = split_token(raw)
        if key is None or signature is None:
            return Result.fail("badToken")

        token = self.identities.get_hmac_token(key)
        if token is None or not token.secret2:
            return Result.fail("badToken")

        expected = sign(self.encrypter.decrypt(token.secret2), credentials.get("body") or b"")
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
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
        key, _ = split_token(self.ctx.header(self.header_name))
        if key:
            token = self.identities.get_hmac_token_for_user(self.user, key)
            if token is not None:
                _bind(self.user, token)


def _bind(user: User, token: AccessToken) -> None:
    if user.tokens is not None:
        user.tokens.current_hmac_token = token
