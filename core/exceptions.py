"""
core/exceptions.py -- Exception taxonomy for gatehouse.

Exceptions are reserved for programmer errors, configuration errors and
infrastructure failures. Expected authentication failures are returned as
core.result.Result values instead.

  AuthError
    AuthenticationError    unknown authenticator, invalid user, missing entity
    AuthLogicError         double login, pending action misuse, missing user
    AuthorizationError     unknown group / permission, malformed permission
    InvalidTokenError      JWT verification failure (kind: TokenErrorKind)
    ActionNotAvailableError  action step that does not exist (HTTP 404)
    ConfigurationError     bad or missing configuration
    EncryptionError        HMAC secret encryption / decryption failure
    InfrastructureError    outside-world failure
      BreachLookupError    breach-password API unreachable
      StoreError           database write failure
"""

from __future__ import annotations

from enum import Enum


class AuthError(Exception):
    """Base for every gatehouse exception. code mirrors core/messages.py keys."""

    code = "auth_error"
    status_code = 400

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AuthenticationError(AuthError):
    code = "authentication_error"
    status_code = 401


class AuthLogicError(AuthError):
    code = "logic_error"
    status_code = 500


class AuthorizationError(AuthError):
    code = "authorization_error"
    status_code = 403


class TokenErrorKind(str, Enum):
    INVALID = "invalid"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"


class InvalidTokenError(AuthError):
    """A JWT failed verification. kind is the closed cause callers branch on."""

    status_code = 401

    _CODES = {
        TokenErrorKind.INVALID: "invalidJwt",
        TokenErrorKind.EXPIRED: "expiredJwt",
        TokenErrorKind.NOT_YET_VALID: "beforeValidJwt",
    }

    def __init__(self, kind: TokenErrorKind, message: str) -> None:
        super().__init__(message, code=self._CODES[kind])
        self.kind = kind


class ActionNotAvailableError(AuthError):
    code = "not_found"
    status_code = 404


class ConfigurationError(AuthError):
    code = "configuration_error"
    status_code = 500


class EncryptionError(AuthError):
    code = "encryption_error"
    status_code = 500


class InfrastructureError(AuthError):
    code = "infrastructure_error"
    status_code = 503


class BreachLookupError(InfrastructureError):
    code = "breach_lookup_failed"


class StoreError(InfrastructureError):
    code = "store_error"
