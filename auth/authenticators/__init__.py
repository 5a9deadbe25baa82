"""Authenticator strategies: session, bearer tokens, HMAC-signed requests and JWT."""

from auth.authenticators.access_tokens import AccessTokensAuthenticator
from auth.authenticators.base import Authenticator, StatelessAuthenticator
from auth.authenticators.hmac_sha256 import HmacSha256Authenticator
from auth.authenticators.jwt import JwtAuthenticator
from auth.authenticators.session import SessionAuthenticator, UserState

__all__ = [
    "AccessTokensAuthenticator",
    "Authenticator",
    "HmacSha256Authenticator",
    "JwtAuthenticator",
    "SessionAuthenticator",
    "StatelessAuthenticator",
    "UserState",
]
