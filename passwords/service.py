"""
passwords/service.py -- Central place for password hashing and validation.

Passwords wraps the hasher (bcrypt / Argon2) and the ordered validator chain.
Authenticators and the registrar only ever talk to this class.
"""

from __future__ import annotations

from typing import Optional

from core.config import HashAlgorithm, Settings
from core.exceptions import AuthenticationError
from core.messages import message
from core.models import User
from core.result import Result
from passwords.hasher import BCRYPT_MAX_BYTES, PasswordHasher
from passwords.validators import BaseValidator, build_validators

MAX_LENGTH = 255


class Passwords:
    def __init__(self, settings: Settings, validators: Optional[list[BaseValidator]] = None) -> None:
        self.settings = settings
        self.hasher = PasswordHasher(settings)
        self.validators = validators if validators is not None else build_validators(settings)

    def hash(self, password: str) -> str:
        return self.hasher.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        return self.hasher.verify(password, hashed)

    def needs_rehash(self, hashed: str) -> bool:
        return self.hasher.needs_rehash(hashed)

    def burn(self, password: str) -> None:
        self.hasher.burn(password)

    def max_length(self) -> int:
        """Longest accepted password: bcrypt's byte ceiling, else 255 characters."""
        if self.settings.hash_algorithm == HashAlgorithm.bcrypt:
            return BCRYPT_MAX_BYTES
        return MAX_LENGTH

    def check(self, password: str, user: Optional[User] = None) -> Result:
        """Run password through every configured validator.

        Stops at the first failing validator and returns its Result. Raises
        AuthenticationError if no user is supplied: the personal-information
        checks cannot run without one.
        """
        if user is None:
            raise AuthenticationError("A user entity must be provided for password validation.", code="noUserEntity")

        password = password.strip()
        if not password:
            return Result.fail("errorPasswordEmpty")
        if self.settings.hash_algorithm == HashAlgorithm.bcrypt:
            if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
                return Result.fail("errorPasswordTooLongBytes", reason=message("errorPasswordTooLongBytes", max=BCRYPT_MAX_BYTES))
        elif len(password) > MAX_LENGTH:
            return Result.fail("errorPasswordTooLongBytes", reason=message("errorPasswordTooLongBytes", max=MAX_LENGTH))

        for validator in self.validators:
            result = validator.check(password, user)
            if not result.is_ok():
                return result
        return Result.ok()
