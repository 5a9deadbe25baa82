"""
auth/jwt_manager.py -- JWT issuance and verification.

JwtManager builds the claim set (default claims, sub, iat, exp) and hands
signing / verification to a JwtAdapter. The shipped adapter, JoseAdapter,
uses python-jose.

Keysets: settings.jwt.keys maps a keyset name to an ordered tuple of JwtKey.
The first key signs. Every key verifies; with more than one key the token's
"kid" header selects which, so a new key can be rolled in ahead of the old
one being retired.

Time claims are checked here against the injected clock rather than by
python-jose, so expiry is testable without sleeping. Failures surface as
InvalidTokenError with a closed TokenErrorKind:

  INVALID         malformed, bad signature, unknown kid, wrong algorithm
  EXPIRED         now - leeway >= exp
  NOT_YET_VALID   nbf or iat later than now + leeway

No revocation list is kept: a token stays valid until exp, logout or not.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from cryptography.hazmat.primitives import serialization
from jose import JWTError, jwt

from core.clock import Clock, system_clock
from core.config import JwtKey, JwtSettings
from core.exceptions import AuthLogicError, ConfigurationError, InvalidTokenError, TokenErrorKind
from core.messages import message
from core.models import User

logger = logging.getLogger("gatehouse.jwt")

# Signature and claim validation is done by JoseAdapter itself.
_DECODE_OPTIONS = {
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
}


class JwtAdapter(Protocol):
    def encode(self, payload: dict[str, Any], keyset: str, headers: Optional[dict[str, Any]] = None) -> str: ...

    def decode(self, token: str, keyset: str) -> dict[str, Any]: ...


class JoseAdapter:
    def __init__(self, settings: JwtSettings, clock: Clock = system_clock) -> None:
        self.settings = settings
        self.clock = clock

    def _keys(self, keyset: str) -> tuple[JwtKey, ...]:
        keys = self.settings.keys.get(keyset)
        if not keys:
            raise ConfigurationError(f'JWT keyset "{keyset}" is not configured.')
        return keys

    def encode(self, payload: dict[str, Any], keyset: str, headers: Optional[dict[str, Any]] = None) -> str:
        key = self._keys(keyset)[0]
        extra_headers = dict(headers or {})
        if key.kid:
            extra_headers["kid"] = key.kid
        try:
            return jwt.encode(payload, _signing_key(key), algorithm=key.alg, headers=extra_headers or None)
        except (JWTError, ValueError) as exc:
            raise AuthLogicError(f"Cannot encode JWT: {exc}") from exc

    def decode(self, token: str, keyset: str) -> dict[str, Any]:
        keys = self._keys(keyset)
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise InvalidTokenError(TokenErrorKind.INVALID, message("invalidJwt")) from exc

        key = _select_key(keys, header.get("kid"))
        if key is None:
            raise InvalidTokenError(TokenErrorKind.INVALID, message("invalidJwt"))

        try:
            claims = jwt.decode(token, _verifying_key(key), algorithms=[key.alg], options=_DECODE_OPTIONS)
        except JWTError as exc:
            logger.warning("JWT rejected: %s", exc)
            raise InvalidTokenError(TokenErrorKind.INVALID, message("invalidJwt")) from exc

        self._check_times(claims)
        return claims

    def _check_times(self, claims: dict[str, Any]) -> None:
        now = int(self.clock().timestamp())
        leeway = self.settings.leeway
        try:
            exp = _numeric(claims, "exp")
            nbf = _numeric(claims, "nbf")
            iat = _numeric(claims, "iat")
        except ValueError as exc:
            raise InvalidTokenError(TokenErrorKind.INVALID, message("invalidJwt")) from exc

        if nbf is not None and nbf > now + leeway:
            raise InvalidTokenError(TokenErrorKind.NOT_YET_VALID, message("beforeValidJwt"))
        if iat is not None and iat > now + leeway:
            raise InvalidTokenError(TokenErrorKind.NOT_YET_VALID, message("beforeValidJwt"))
        if exp is not None and now - leeway >= exp:
            raise InvalidTokenError(TokenErrorKind.EXPIRED, message("expiredJwt"))


def _numeric(claims: dict[str, Any], name: str) -> Optional[int]:
    value = claims.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} claim must be a number")
    return int(value)


def _select_key(keys: tuple[JwtKey, ...], kid: Optional[str]) -> Optional[JwtKey]:
    if len(keys) == 1:
        return keys[0]
    for key in keys:
        if key.kid and key.kid == kid:
            return key
    return None


def _verifying_key(key: JwtKey) -> str:
    value = key.secret or key.public
    if not value:
        raise ConfigurationError(f'JWT key "{key.kid}" has neither a secret nor a public key.')
    return value


def _signing_key(key: JwtKey) -> str:
    if key.secret:
        return key.secret
    if not key.private:
        raise ConfigurationError(f'JWT key "{key.kid}" has neither a secret nor a private key.')
    if not key.passphrase:
        return key.private
    # python-jose cannot open encrypted PEM; decrypt and hand it plain PKCS8.
    private_key = serialization.load_pem_private_key(key.private.encode("utf-8"), password=key.passphrase.encode("utf-8"))
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


class JwtManager:
    """Claim assembly on top of a JwtAdapter.

    Usage:
        manager = JwtManager(settings.jwt)
        token = manager.generate_token(user, {"role": "admin"})
        claims = manager.parse(token)  # raises InvalidTokenError
    """

    def __init__(self, settings: JwtSettings, clock: Clock = system_clock, adapter: Optional[JwtAdapter] = None) -> None:
        self.settings = settings
        self.clock = clock
        self.adapter = adapter or JoseAdapter(settings, clock)

    def generate_token(
        self,
        user: User,
        claims: Optional[dict[str, Any]] = None,
        ttl: Optional[int] = None,
        keyset: str = "default",
        headers: Optional[dict[str, Any]] = None,
    ) -> str:
        payload = dict(claims or {})
        payload["sub"] = str(user.id)
        return self.issue(payload, ttl, keyset, headers)

    def issue(
        self,
        claims: dict[str, Any],
        ttl: Optional[int] = None,
        keyset: str = "default",
        headers: Optional[dict[str, Any]] = None,
    ) -> str:
        """Sign claims merged over the default claims. iat / exp are filled in unless given."""
        payload = {**self.settings.default_claims, **claims}
        if "iat" not in claims:
            payload["iat"] = int(self.clock().timestamp())
        if "exp" not in claims:
            payload["exp"] = payload["iat"] + self.settings.time_to_live
        if ttl is not None:
            payload["exp"] = payload["iat"] + ttl
        return self.adapter.encode(payload, keyset, headers)

    def parse(self, token: str, keyset: str = "default") -> dict[str, Any]:
        return self.adapter.decode(token, keyset)
