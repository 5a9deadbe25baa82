"""
core/config.py -- Centralized gatehouse configuration via pydantic-settings.

All environment variable reads for gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly. Components never look settings
up on their own either: the composition roots (api/main.py, main.py) call
get_settings() once and pass the frozen Settings object down explicitly.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from AUTH_* environment
      variables and an optional .env file. Nested groups use "__" as the
      delimiter, e.g. AUTH_SESSION__REMEMBER_LENGTH=86400.

  Frozen models: every settings model is immutable once validated, so a
      component can hold a reference without worrying about another one
      mutating it mid-request.

Security notes:
  [M6] The session SECRET_KEY must be at least 32 chars. It signs the session
       cookie, which carries the logged-in user id.

  [M7] Outside debug mode a missing SECRET_KEY is a hard startup failure.
       An empty HMAC encryption key ring is filled with a throwaway key in
       debug mode; in production HmacEncrypter refuses to start without it.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
authz/, passwords/, or store/.
"""

from __future__ import annotations

import logging
import secrets
from enum import Enum, IntEnum
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
YEAR = 365 * DAY


class RecordLoginAttempt(IntEnum):
    """How much of the stateless (token/HMAC/JWT) traffic lands in the audit log."""

    NONE = 0
    FAILURE = 1
    ALL = 2


class HashAlgorithm(str, Enum):
    bcrypt = "bcrypt"
    argon2i = "argon2i"
    argon2id = "argon2id"


# ---------------------------------------------------------------------------
# Nested groups
# ---------------------------------------------------------------------------


class SessionSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Key under which the auth info dict lives inside the session.
    field: str = "user"
    allow_remembering: bool = True
    remember_cookie_name: str = "remember"
    remember_length: int = 30 * DAY
    secure_cookies: bool = False


class TokenSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_login_attempt: RecordLoginAttempt = RecordLoginAttempt.FAILURE
    tokens_header: str = "Authorization"
    hmac_header: str = "Authorization"
    unused_token_lifetime: int = YEAR
    hmac_secret_key_byte_size: int = 32
    # Key name -> urlsafe base64 Fernet key. Rotation: add a new entry, point
    # hmac_encryption_current_key at it, then run `main.py hmac reencrypt`.
    hmac_encryption_keys: dict[str, str] = Field(default_factory=dict)
    hmac_encryption_current_key: str = "k1"
    secret2_storage_limit: int = 255


class JwtKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    kid: str = ""
    alg: str = "HS256"
    # Symmetric algorithms use secret; asymmetric ones use public/private.
    secret: Optional[str] = None
    public: Optional[str] = None
    private: Optional[str] = None
    passphrase: str = ""


class JwtSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_login_attempt: RecordLoginAttempt = RecordLoginAttempt.FAILURE
    authenticator_header: str = "Authorization"
    default_claims: dict[str, str] = Field(default_factory=lambda: {"iss": ""})
    time_to_live: int = HOUR
    # Keyset name -> ordered keys. The first key signs; all keys verify.
    keys: dict[str, tuple[JwtKey, ...]] = Field(default_factory=dict)
    # Seconds of clock skew tolerated on exp / nbf / iat.
    leeway: int = 0


class GroupSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_group: str = "user"
    groups: dict[str, dict[str, str]] = Field(
        default_factory=lambda: {
            "superadmin": {"title": "Super Admin", "description": "Complete control of the site."},
            "admin": {"title": "Admin", "description": "Day to day administrators of the site."},
            "developer": {"title": "Developer", "description": "Site programmers."},
            "user": {"title": "User", "description": "General users of the site. Often customers."},
            "beta": {"title": "Beta User", "description": "Has access to beta-level features."},
        }
    )
    permissions: dict[str, str] = Field(
        default_factory=lambda: {
            "admin.access": "Can access the sites admin area",
            "admin.settings": "Can access the main site settings",
            "users.manage-admins": "Can manage other admins",
            "users.create": "Can create new non-admin users",
            "users.edit": "Can edit existing non-admin users",
            "users.delete": "Can delete existing non-admin users",
            "beta.access": "Can access beta-level features",
        }
    )
    matrix: dict[str, tuple[str, ...]] = Field(
        default_factory=lambda: {
            "superadmin": ("admin.*", "users.*", "beta.*"),
            "admin": ("admin.access", "users.create", "users.edit", "users.delete", "beta.access"),
            "developer": ("admin.access", "admin.settings", "users.create", "users.edit", "beta.access"),
            "user": (),
            "beta": ("beta.access",),
        }
    )


class ActionSettings(BaseModel):
    """Post-login / post-registration action aliases (None = no action)."""

    model_config = ConfigDict(frozen=True)

    register: Optional[str] = None
    login: Optional[str] = None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """gatehouse settings loaded from AUTH_* environment variables and .env.

    All fields have defaults so Settings() can be instantiated in test
    environments (with AUTH_DEBUG=true) without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    secret_key: str = Field(default="", validate_default=True)
    database_url: str = "sqlite:///gatehouse_auth.db"

    # ------------------------------------------------------------------
    # Authenticators
    # ------------------------------------------------------------------

    default_authenticator: str = "session"
    authenticators: tuple[str, ...] = ("session", "tokens", "hmac", "jwt")
    authentication_chain: tuple[str, ...] = ("session", "tokens")
    valid_fields: tuple[str, ...] = ("email",)
    allow_registration: bool = True
    record_active_date: bool = True
    allow_magic_link_logins: bool = True
    magic_link_lifetime: int = HOUR
    auth_rate_limit: str = "10/minute"

    session: SessionSettings = Field(default_factory=SessionSettings)
    tokens: TokenSettings = Field(default_factory=TokenSettings, validate_default=True)
    jwt: JwtSettings = Field(default_factory=JwtSettings)
    groups: GroupSettings = Field(default_factory=GroupSettings)
    actions: ActionSettings = Field(default_factory=ActionSettings)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # None (or 0) is a configuration bug; CompositionValidator raises on it.
    minimum_password_length: Optional[int] = 8
    password_validators: tuple[str, ...] = ("composition", "nothing_personal", "dictionary")
    personal_fields: tuple[str, ...] = ()
    max_similarity: int = Field(default=50, validate_default=True)
    hash_algorithm: HashAlgorithm = HashAlgorithm.bcrypt
    hash_cost: int = 10
    hash_memory_cost: int = 65536
    hash_time_cost: int = 4
    hash_threads: int = 1
    pwned_api_url: str = "https://api.pwnedpasswords.com/range/"
    pwned_timeout: float = 5.0
    # True: an unreachable breach API skips the check (logged). False: raise.
    pwned_fail_open: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str, info: ValidationInfo) -> str:
        """Enforce the session SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start without one.
        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not value:
            if info.data.get("debug"):
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
                return secrets.token_hex(32)
            raise ValueError(
                "AUTH_SECRET_KEY is required in production mode. "
                "Set it in your environment or .env file. "
                "To run in development mode, set AUTH_DEBUG=true."
            )
        if len(value) < 32:
            raise ValueError("AUTH_SECRET_KEY must be at least 32 characters.")
        return value

    @field_validator("max_similarity")
    @classmethod
    def clamp_max_similarity(cls, value: int) -> int:
        # Working range is 1-100; anything below 1 disables the check.
        if value < 1:
            return 0
        return min(value, 100)

    @field_validator("tokens")
    @classmethod
    def validate_hmac_key_ring(cls, value: TokenSettings, info: ValidationInfo) -> TokenSettings:
        if not value.hmac_encryption_keys:
            if info.data.get("debug"):
                logger.warning("Using auto-generated HMAC encryption key. Stored HMAC secrets will not survive restarts.")
                return value.model_copy(
                    update={"hmac_encryption_keys": {value.hmac_encryption_current_key: Fernet.generate_key().decode()}}
                )
            return value
        if value.hmac_encryption_current_key not in value.hmac_encryption_keys:
            raise ValueError(
                f"hmac_encryption_current_key {value.hmac_encryption_current_key!r} is not in hmac_encryption_keys."
            )
        return value

    @model_validator(mode="after")
    def validate_authenticator_aliases(self) -> "Settings":
        """The default authenticator and the chain must name enabled authenticators."""
        if self.default_authenticator not in self.authenticators:
            raise ValueError(f"default_authenticator {self.default_authenticator!r} is not an enabled authenticator.")
        unknown = [alias for alias in self.authentication_chain if alias not in self.authenticators]
        if unknown:
            raise ValueError(f"authentication_chain names unknown authenticators: {unknown!r}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    Only composition roots call this. In tests: call get_settings.cache_clear()
    between test cases if you need to inject different environment variables.
    """
    return Settings()
