"""
passwords/hasher.py -- bcrypt / Argon2 password hashing.

Security design decisions:
  bcrypt: used directly (no passlib wrapper). bcrypt only looks at the first
       72 bytes of input and current releases reject longer input outright,
       so Passwords.check() enforces a 72-byte ceiling when bcrypt is active.

  Argon2i / Argon2id: argon2-cffi PasswordHasher with the configured time,
       memory and parallelism parameters.

  Verification is dispatched on the stored hash prefix ("$2" vs "$argon2"),
       not on the configured algorithm, so existing hashes keep verifying
       after an algorithm switch. needs_rehash() then reports them for
       migration on the next successful login.

  The dummy hash [C1] lets callers spend the same verify cost when the user
       does not exist, so response time does not reveal account existence.
"""

from __future__ import annotations

import logging
from typing import Optional

import bcrypt
from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError

from core.config import HashAlgorithm, Settings

logger = logging.getLogger("gatehouse.passwords")

BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    def __init__(self, settings: Settings) -> None:
        self.algorithm = settings.hash_algorithm
        self.cost = settings.hash_cost
        self._argon2 = Argon2Hasher(
            time_cost=settings.hash_time_cost,
            memory_cost=settings.hash_memory_cost,
            parallelism=settings.hash_threads,
            type=Type.I if self.algorithm == HashAlgorithm.argon2i else Type.ID,
        )
        self._dummy_hash: Optional[str] = None

    def hash(self, password: str) -> str:
        if self.algorithm == HashAlgorithm.bcrypt:
            return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.cost)).decode("utf-8")
        return self._argon2.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        """Return True if password matches hashed. Malformed hashes never match."""
        if hashed.startswith("$argon2"):
            try:
                return self._argon2.verify(hashed, password)
            except (VerificationError, InvalidHashError):
                return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def needs_rehash(self, hashed: str) -> bool:
        if self.algorithm == HashAlgorithm.bcrypt:
            if not hashed.startswith("$2"):
                return True
            try:
                return int(hashed.split("$")[2]) != self.cost
            except (IndexError, ValueError):
                return True
        if not hashed.startswith("$argon2"):
            return True
        try:
            return self._argon2.check_needs_rehash(hashed)
        except InvalidHashError:
            return True

    def burn(self, password: str) -> None:
        """Spend one verify against a throwaway hash [C1].

        Called on the unknown-user branch of a login. The dummy hash is built
        lazily so importing this module stays cheap.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("gatehouse_timing_dummy")
        self.verify(password, self._dummy_hash)
