"""
passwords/validators.py -- Pluggable password-strength validators.

Each validator exposes check(password, user) -> Result. Passwords.check()
runs them in configured order and stops at the first failure, so a cheap
local check (composition) always runs before a network one (pwned).

  composition       minimum length, counted in code points
  nothing_personal  no username / email / personal-field fragments, and not
                    too similar to the username
  dictionary        not in the bundled common-password list
  pwned             not present in the Have I Been Pwned range API

Similarity metric (nothing_personal): difflib.SequenceMatcher ratio with
autojunk disabled, i.e. Ratcliff/Obershelp: 2 * matched_chars / total_chars,
as a percentage. A password at or above Settings.max_similarity is rejected;
0 disables the check.
"""

from __future__ import annotations

import difflib
import hashlib
import logging
import re
from pathlib import Path
from typing import Callable, Optional

import requests

from core.config import Settings
from core.exceptions import AuthenticationError, BreachLookupError, ConfigurationError
from core.messages import message
from core.models import User
from core.result import Result

logger = logging.getLogger("gatehouse.passwords")

_DICTIONARY_PATH = Path(__file__).parent / "_dictionary.txt"

# Module-level session shared across breach lookups for connection pooling.
# The range API is a known public endpoint; 3 redirects is generous.
_session = requests.Session()
_session.max_redirects = 3

_TRIVIAL_WORDS = frozenset(
    {"a", "an", "and", "as", "at", "but", "for", "if", "in", "not", "of", "or", "so", "the", "then"}
)
_NON_WORD = re.compile(r"[\W_]+")


class BaseValidator:
    """A validator is built once per Passwords instance with the frozen Settings."""

    alias = ""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def check(self, password: str, user: Optional[User] = None) -> Result:
        raise NotImplementedError

    def _fail(self, error: str, suggestion: str, **params: object) -> Result:
        return Result.fail(error, reason=message(error, **params), extra_info=message(suggestion, **params))


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


class CompositionValidator(BaseValidator):
    alias = "composition"

    def check(self, password: str, user: Optional[User] = None) -> Result:
        minimum = self.settings.minimum_password_length
        if not minimum:
            raise AuthenticationError(
                "minimum_password_length must be set when the composition validator is enabled.",
                code="unsetPasswordLength",
            )
        if len(password) < minimum:
            return self._fail("errorPasswordLength", "suggestPasswordLength", min=minimum)
        return Result.ok()


# ---------------------------------------------------------------------------
# Nothing personal
# ---------------------------------------------------------------------------


def _strip_explode(value: str) -> list[str]:
    """Split value on non-word characters, keeping the intact value first."""
    parts = _NON_WORD.sub(" ", value).strip().split(" ")
    if value not in parts:
        parts.insert(0, value)
    return parts


def _is_trivial(word: str) -> bool:
    return not word or word in _TRIVIAL_WORDS or len(word) < 3


class NothingPersonalValidator(BaseValidator):
    alias = "nothing_personal"

    def check(self, password: str, user: Optional[User] = None) -> Result:
        password = password.lower()
        if user is None:
            return Result.ok()
        if not self._is_not_personal(password, user):
            return self._fail("errorPasswordPersonal", "suggestPasswordPersonal")
        if not self._is_not_similar(password, user):
            return self._fail("errorPasswordTooSimilar", "suggestPasswordTooSimilar")
        return Result.ok()

    def _needles(self, user: User) -> list[str]:
        username = (user.username or "").lower()
        email = (user.email or "").lower()
        needles = _strip_explode(username)
        local_part, _, domain = email.partition("@")
        needles.extend(_strip_explode(local_part))
        if domain:
            needles.append(domain)
        for name in self.settings.personal_fields:
            value = user.personal_value(name)
            if value:
                needles.append(value.lower())
        return needles

    def _is_not_personal(self, password: str, user: User) -> bool:
        username = (user.username or "").lower()
        email = (user.email or "").lower()
        if password in (username, email) or password == username[::-1]:
            return False

        needles = [n for n in self._needles(user) if not _is_trivial(n)]
        for haystack in _strip_explode(password):
            if _is_trivial(haystack):
                continue
            for needle in needles:
                if needle in haystack or haystack in needle:
                    return False
        return True

    def _is_not_similar(self, password: str, user: User) -> bool:
        max_similarity = self.settings.max_similarity
        if not user.username or not max_similarity:
            return True
        matcher = difflib.SequenceMatcher(None, password, user.username.lower(), autojunk=False)
        return matcher.ratio() * 100 < max_similarity


# ---------------------------------------------------------------------------
# Dictionary
# ---------------------------------------------------------------------------


class DictionaryValidator(BaseValidator):
    alias = "dictionary"

    def __init__(self, settings: Settings, path: Path = _DICTIONARY_PATH) -> None:
        super().__init__(settings)
        self.path = path

    def check(self, password: str, user: Optional[User] = None) -> Result:
        # Streamed line by line; the list is never held in memory.
        with self.path.open(encoding="utf-8") as wordlist:
            for line in wordlist:
                if line.rstrip("\r\n") == password:
                    return self._fail("errorPasswordCommon", "suggestPasswordCommon")
        return Result.ok()


# ---------------------------------------------------------------------------
# Pwned (k-anonymity range query)
# ---------------------------------------------------------------------------


class PwnedValidator(BaseValidator):
    """Only the first 5 hex chars of the SHA-1 ever leave the process.

    A lookup failure is never read as "breached". With pwned_fail_open the
    check is skipped (logged at error level); otherwise BreachLookupError is
    raised for the caller to handle.
    """

    alias = "pwned"

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        super().__init__(settings)
        self.session = session or _session

    def check(self, password: str, user: Optional[User] = None) -> Result:
        digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()  # noqa: S324 # nosec B324 -- protocol-mandated
        prefix, suffix = digest[:5], digest[5:]
        try:
            resp = self.session.get(
                self.settings.pwned_api_url + prefix,
                headers={"Accept": "text/plain", "Add-Padding": "true"},
                timeout=self.settings.pwned_timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            if self.settings.pwned_fail_open:
                logger.error("Breach lookup failed, skipping pwned check: %s", exc)
                return Result.ok()
            logger.error("Breach lookup failed: %s", exc)
            raise BreachLookupError(f"Unable to reach the breach-password API: {exc}") from exc

        hits = _range_hits(resp.text, suffix)
        if not hits:
            return Result.ok()
        wording = "databases" if hits > 1 else "a database"
        return self._fail("errorPasswordPwned", "suggestPasswordPwned", hits=hits, count=wording)


def _range_hits(body: str, suffix: str) -> int:
    """Return the breach count for suffix in a "SUFFIX:COUNT" range body.

    Padding entries carry a count of 0 and are treated as absent.
    """
    for line in body.splitlines():
        candidate, _, count = line.strip().partition(":")
        if candidate.upper() == suffix:
            try:
                return int(count)
            except ValueError:
                return 0
    return 0


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

VALIDATORS: dict[str, Callable[[Settings], BaseValidator]] = {
    CompositionValidator.alias: CompositionValidator,
    NothingPersonalValidator.alias: NothingPersonalValidator,
    DictionaryValidator.alias: DictionaryValidator,
    PwnedValidator.alias: PwnedValidator,
}


def build_validators(settings: Settings, session: Optional[requests.Session] = None) -> list[BaseValidator]:
    """Resolve configured validator aliases once, at construction time.

    session is handed to the breach lookup only; tests pass a mock here.
    """
    unknown = [alias for alias in settings.password_validators if alias not in VALIDATORS]
    if unknown:
        raise ConfigurationError(f"Unknown password validators: {unknown!r}")
    validators: list[BaseValidator] = []
    for alias in settings.password_validators:
        if alias == PwnedValidator.alias:
            validators.append(PwnedValidator(settings, session=session))
        else:
            validators.append(VALIDATORS[alias](settings))
    return validators
