"""
auth/hmac_encrypter.py -- Encryption at rest for HMAC signing secrets.

The HMAC authenticator needs the plain signing secret to recompute request
signatures, so it cannot be hashed like an access token. Instead secret2 is
stored encrypted with a named Fernet key:

    $b6$<key-name>$<fernet token>

The key name travels with the value, so several keys can be live at once.
Rotation: add a key to AUTH_TOKENS__HMAC_ENCRYPTION_KEYS, point
AUTH_TOKENS__HMAC_ENCRYPTION_CURRENT_KEY at it, then run
`python main.py hmac reencrypt`.
"""

from __future__ import annotations

import base64
import logging
import re
import secrets

from cryptography.fernet import Fernet, InvalidToken

from core.config import TokenSettings
from core.exceptions import ConfigurationError, EncryptionError

logger = logging.getLogger("gatehouse.hmac")

_PREFIX = "$b6$"
_ENCRYPTED = re.compile(r"^\$b6\$(\w+?)\$(.+)\Z", re.DOTALL)


class HmacEncrypter:
    def __init__(self, settings: TokenSettings) -> None:
        self.settings = settings
        self.current_key = settings.hmac_encryption_current_key
        self._fernets: dict[str, Fernet] = {}
        # Fail at startup, not at the first HMAC request.
        self._fernet(self.current_key)

    def _fernet(self, name: str) -> Fernet:
        if name not in self._fernets:
            key = self.settings.hmac_encryption_keys.get(name)
            if not key:
                raise ConfigurationError(f"HMAC encryption key {name!r} does not exist.")
            try:
                self._fernets[name] = Fernet(key)
            except ValueError as exc:
                raise ConfigurationError(f"HMAC encryption key {name!r} is not a valid Fernet key.") from exc
        return self._fernets[name]

    def encrypt(self, value: str) -> str:
        token = self._fernet(self.current_key).encrypt(value.encode("utf-8")).decode("ascii")
        encrypted = f"{_PREFIX}{self.current_key}${token}"
        if len(encrypted) > self.settings.secret2_storage_limit:
            raise EncryptionError("Encrypted key too long. Unable to store value.")
        return encrypted

    def decrypt(self, value: str) -> str:
        match = _ENCRYPTED.match(value)
        if match is None:
            raise EncryptionError("Unable to decrypt string.")
        try:
            return self._fernet(match.group(1)).decrypt(match.group(2).encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Unable to decrypt string.") from exc

    def is_encrypted(self, value: str) -> bool:
        return value.startswith(_PREFIX)

    def is_encrypted_with_current_key(self, value: str) -> bool:
        return value.startswith(f"{_PREFIX}{self.current_key}$")

    def generate_secret_key(self) -> str:
        """Return a fresh base64 signing secret of hmac_secret_key_byte_size random bytes."""
        return base64.b64encode(secrets.token_bytes(self.settings.hmac_secret_key_byte_size)).decode("ascii")
