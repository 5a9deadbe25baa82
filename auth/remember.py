"""
auth/remember.py -- Remember-me selector / validator protocol.

Cookie value: "<selector>:<validator>"
  selector   12 random bytes, hex. Public lookup key, unique in the table.
  validator  20 random bytes, hex. Only SHA-256(validator) is stored.

Every successful remember-me login rotates the validator (same selector, new
validator, new expiry) through a compare-and-swap update, so a stolen cookie
is good for at most one use. If two requests race with the same cookie only
one rotation lands; the other is rejected and must log in again.

Expired rows are swept opportunistically: each issuance has a 20% chance of
triggering a purge, so no scheduled job is needed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import random
import secrets
from datetime import timedelta
from typing import Callable, Optional

from core.clock import Clock, ensure_utc, system_clock
from core.config import SessionSettings
from core.models import RememberToken
from store.remember import RememberStore

logger = logging.getLogger("gatehouse.remember")

_PURGE_PROBABILITY = 0.2


def hash_validator(validator: str) -> str:
    return hashlib.sha256(validator.encode("utf-8")).hexdigest()


class RememberMe:
    def __init__(
        self,
        store: RememberStore,
        settings: SessionSettings,
        clock: Clock = system_clock,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock
        self.rng = rng

    @property
    def cookie_name(self) -> str:
        return self.settings.remember_cookie_name

    def _expires(self):
        return self.clock() + timedelta(seconds=self.settings.remember_length)

    def issue(self, user_id: int) -> str:
        """Store a new token for user_id and return the raw cookie value."""
        selector = secrets.token_hex(12)
        validator = secrets.token_hex(20)
        self.store.remember_user(user_id, selector, hash_validator(validator), self._expires())
        return f"{selector}:{validator}"

    def verify(self, raw: Optional[str]) -> Optional[RememberToken]:
        """Return the stored token if raw is a live, matching cookie value."""
        if not raw or ":" not in raw:
            return None
        selector, _, validator = raw.partition(":")
        if not selector or not validator:
            return None
        token = self.store.get_remember_token(selector)
        if token is None:
            return None
        if not hmac.compare_digest(token.hashed_validator, hash_validator(validator)):
            return None
        if ensure_utc(token.expires) <= self.clock():
            return None
        return token

    def rotate(self, token: RememberToken) -> Optional[str]:
        """Replace the validator. Returns the new cookie value, or None on a rotation conflict."""
        validator = secrets.token_hex(20)
        rotated = self.store.update_remember_validator(
            token.selector, token.hashed_validator, hash_validator(validator), self._expires()
        )
        if not rotated:
            logger.warning("Remember-me rotation conflict for selector %s; rejecting re-login", token.selector[:6])
            return None
        return f"{token.selector}:{validator}"

    def discard(self, raw: Optional[str]) -> None:
        """Delete the row behind a cookie value without verifying it."""
        selector = (raw or "").partition(":")[0]
        if selector:
            self.store.delete_selector(selector)

    def purge_user(self, user_id: int) -> None:
        self.store.purge_remember_tokens(user_id)

    def maybe_purge(self) -> None:
        if self.rng() < _PURGE_PROBABILITY:
            removed = self.store.purge_old_remember_tokens()
            if removed:
                logger.info("Purged %d expired remember-me tokens", removed)
