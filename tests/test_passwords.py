"""
tests/test_passwords.py -- Password hashing and the validator chain.

Coverage:
  - bcrypt / argon2id hash and verify, cross-algorithm verify, needs_rehash
  - composition, nothing_personal (fragments + similarity), dictionary
  - pwned range lookup with a mocked requests session, fail-open / fail-closed
  - bcrypt 72-byte ceiling and the missing-user error
"""

from __future__ import annotations

import hashlib
from unittest.mock import MagicMock

import pytest
import requests

from core.exceptions import AuthenticationError, BreachLookupError
from core.models import User
from passwords.hasher import PasswordHasher
from passwords.service import Passwords
from passwords.validators import build_validators

from conftest import PASSWORD, make_settings


def _passwords(**overrides) -> Passwords:
    settings = make_settings(**overrides)
    return Passwords(settings, build_validators(settings))


def _pwned_session(body: str = "", exc: Exception | None = None) -> MagicMock:
    session = MagicMock()
    if exc is not None:
        session.get.side_effect = exc
    else:
        resp = MagicMock()
        resp.text = body
        resp.raise_for_status.return_value = None
        session.get.return_value = resp
    return session


class TestHasher:
    """bcrypt is the default; argon2 hashes keep verifying after a switch back."""

    def test_bcrypt_round_trip(self) -> None:
        hasher = PasswordHasher(make_settings())
        hashed = hasher.hash(PASSWORD)
        assert hashed.startswith("$2")
        assert hasher.verify(PASSWORD, hashed)
        assert not hasher.verify("not the password", hashed)

    def test_argon2id_hash_verifies_under_bcrypt_config(self) -> None:
        argon = PasswordHasher(make_settings(hash_algorithm="argon2id", hash_memory_cost=8192, hash_time_cost=1))
        hashed = argon.hash(PASSWORD)
        assert hashed.startswith("$argon2id$")
        bcrypt_hasher = PasswordHasher(make_settings())
        assert bcrypt_hasher.verify(PASSWORD, hashed), "Verification must follow the stored hash, not the config"
        assert bcrypt_hasher.needs_rehash(hashed), "A non-bcrypt hash must be flagged for migration"

    def test_needs_rehash_on_cost_change(self) -> None:
        old = PasswordHasher(make_settings(hash_cost=5)).hash(PASSWORD)
        assert PasswordHasher(make_settings(hash_cost=4)).needs_rehash(old)
        assert not PasswordHasher(make_settings(hash_cost=5)).needs_rehash(old)

    def test_malformed_hash_never_matches(self) -> None:
        hasher = PasswordHasher(make_settings())
        assert not hasher.verify(PASSWORD, "not-a-hash")


class TestValidatorChain:
    """Passwords.check() runs validators in order and stops at the first failure."""

    def test_strong_password_passes(self) -> None:
        result = _passwords().check(PASSWORD, User(email="alice@example.com"))
        assert result.is_ok(), result.reason

    def test_too_short(self) -> None:
        result = _passwords().check("short", User(email="alice@example.com"))
        assert not result.is_ok()
        assert result.code == "errorPasswordLength"
        assert "8" in result.reason
        assert result.extra_info, "A suggestion must accompany the error"

    def test_length_counts_characters_not_bytes(self) -> None:
        passwords = _passwords(password_validators=("composition",))
        user = User(email="alice@example.com")

        assert passwords.check("\u00e9" * 8, user).is_ok()
        assert passwords.check("\u00e9" * 7, user).code == "errorPasswordLength"

    def test_unset_minimum_length_is_a_configuration_bug(self) -> None:
        with pytest.raises(AuthenticationError):
            _passwords(minimum_password_length=None).check(PASSWORD, User(email="alice@example.com"))

    def test_common_password_rejected(self) -> None:
        result = _passwords().check("password1", User(email="alice@example.com"))
        assert result.code == "errorPasswordCommon"

    def test_email_fragment_rejected(self) -> None:
        result = _passwords().check("alice-rocks-2024", User(email="alice@example.com"))
        assert result.code == "errorPasswordPersonal"

    def test_reversed_username_rejected(self) -> None:
        result = _passwords().check("htimsnhoj", User(username="johnsmith", email="x@corp.test"))
        assert result.code == "errorPasswordPersonal"

    def test_personal_field_from_profile(self) -> None:
        user = User(email="x@corp.test", profile={"company": "initech"})
        passwords = _passwords(personal_fields=("company",))
        assert passwords.check("initech-forever-99", user).code == "errorPasswordPersonal"

    def test_too_similar_to_username(self) -> None:
        user = User(username="johnsmith", email="someone@corp.test")
        result = _passwords().check("j0hnsm1th!", user)
        assert result.code == "errorPasswordTooSimilar"

    def test_similarity_check_disabled(self) -> None:
        user = User(username="johnsmith", email="someone@corp.test")
        assert _passwords(max_similarity=0).check("j0hnsm1th!", user).is_ok()

    def test_empty_after_strip(self) -> None:
        assert _passwords().check("    ", User(email="a@b.test")).code == "errorPasswordEmpty"

    def test_bcrypt_byte_ceiling(self) -> None:
        result = _passwords().check("é" * 40, User(email="a@b.test"))
        assert result.code == "errorPasswordTooLongBytes"
        assert "72" in result.reason

    def test_user_is_required(self) -> None:
        with pytest.raises(AuthenticationError):
            _passwords().check(PASSWORD, None)


class TestPwnedValidator:
    """Only the 5-char SHA-1 prefix is sent; lookup failures never mean "breached"."""

    def _suffix(self) -> str:
        return hashlib.sha1(PASSWORD.encode("utf-8")).hexdigest().upper()[5:]

    def _passwords(self, session: MagicMock, **overrides) -> Passwords:
        settings = make_settings(password_validators=("pwned",), **overrides)
        return Passwords(settings, build_validators(settings, session=session))

    def test_breached_password_rejected(self) -> None:
        session = _pwned_session(f"0000000000000000000000000000000000A:0\n{self._suffix()}:42\n")
        result = self._passwords(session).check(PASSWORD, User(email="a@b.test"))
        assert result.code == "errorPasswordPwned"
        assert "42" in result.reason
        assert PASSWORD not in result.reason and PASSWORD not in result.extra_info, "The plaintext must never be echoed back"
        url = session.get.call_args[0][0]
        assert url.endswith(hashlib.sha1(PASSWORD.encode("utf-8")).hexdigest().upper()[:5])

    def test_padding_entry_is_not_a_hit(self) -> None:
        session = _pwned_session(f"{self._suffix()}:0\n")
        assert self._passwords(session).check(PASSWORD, User(email="a@b.test")).is_ok()

    def test_unreachable_api_fails_open(self) -> None:
        session = _pwned_session(exc=requests.ConnectionError("down"))
        assert self._passwords(session).check(PASSWORD, User(email="a@b.test")).is_ok()

    def test_unreachable_api_fail_closed_raises(self) -> None:
        session = _pwned_session(exc=requests.Timeout("slow"))
        with pytest.raises(BreachLookupError):
            self._passwords(session, pwned_fail_open=False).check(PASSWORD, User(email="a@b.test"))
