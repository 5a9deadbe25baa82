"""
tests/test_hmac_encrypter.py -- Encryption at rest for HMAC signing secrets.

Coverage:
  - encrypt / decrypt with the $b6$<key>$ prefix
  - key rotation: values under an old key still decrypt
  - missing or malformed keys fail at construction
  - storage limit, tampered values, unencrypted input
  - Settings key-ring validation
"""

from __future__ import annotations

import base64

import pytest
from cryptography.fernet import Fernet
from pydantic import ValidationError

from core.config import TokenSettings
from core.exceptions import ConfigurationError, EncryptionError
from auth.hmac_encrypter import HmacEncrypter

from conftest import make_settings

K1 = Fernet.generate_key().decode()
K2 = Fernet.generate_key().decode()


def _encrypter(keys=None, current="k1", **overrides) -> HmacEncrypter:
    settings = TokenSettings(
        hmac_encryption_keys=keys if keys is not None else {"k1": K1},
        hmac_encryption_current_key=current,
        **overrides,
    )
    return HmacEncrypter(settings)


class TestEncryptDecrypt:
    def test_prefix_and_round_trip(self) -> None:
        enc = _encrypter()
        value = enc.encrypt("signing-secret")

        assert value.startswith("$b6$k1$")
        assert "signing-secret" not in value
        assert enc.decrypt(value) == "signing-secret"

    def test_is_encrypted(self) -> None:
        enc = _encrypter()
        assert enc.is_encrypted(enc.encrypt("x"))
        assert not enc.is_encrypted("plain-secret")

    def test_rotation(self) -> None:
        old = _encrypter().encrypt("signing-secret")
        rotated = _encrypter({"k1": K1, "k2": K2}, current="k2")

        assert rotated.decrypt(old) == "signing-secret", "Values under a retired key must still decrypt"
        assert not rotated.is_encrypted_with_current_key(old)
        assert rotated.is_encrypted_with_current_key(rotated.encrypt("signing-secret"))

    def test_dropped_key(self) -> None:
        old = _encrypter().encrypt("signing-secret")
        with pytest.raises(ConfigurationError):
            _encrypter({"k2": K2}, current="k2").decrypt(old)


class TestFailures:
    def test_missing_current_key(self) -> None:
        with pytest.raises(ConfigurationError):
            _encrypter({}, current="k1")

    def test_malformed_key(self) -> None:
        with pytest.raises(ConfigurationError):
            _encrypter({"k1": "not-a-fernet-key"})

    def test_storage_limit(self) -> None:
        with pytest.raises(EncryptionError) as exc:
            _encrypter(secret2_storage_limit=40).encrypt("signing-secret")
        assert "too long" in exc.value.message

    def test_tampered_value(self) -> None:
        enc = _encrypter()
        value = enc.encrypt("signing-secret")
        tampered = value[:-6] + ("AAAAAA" if not value.endswith("AAAAAA") else "BBBBBB")
        with pytest.raises(EncryptionError):
            enc.decrypt(tampered)

    @pytest.mark.parametrize("value", ["plain-secret", "$b6$", "$b6$k1$"])
    def test_not_encrypted(self, value) -> None:
        with pytest.raises(EncryptionError):
            _encrypter().decrypt(value)


def test_generate_secret_key() -> None:
    enc = _encrypter()
    first, second = enc.generate_secret_key(), enc.generate_secret_key()
    assert len(base64.b64decode(first)) == 32
    assert first != second


class TestKeyRingSettings:
    def test_debug_generates_a_key(self) -> None:
        settings = make_settings(tokens={})
        assert list(settings.tokens.hmac_encryption_keys) == ["k1"]
        HmacEncrypter(settings.tokens)

    def test_current_key_must_be_in_ring(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(tokens={"hmac_encryption_keys": {"k1": K1}, "hmac_encryption_current_key": "k9"})
