"""
core/models.py -- Domain dataclasses for gatehouse.

Pattern: Data class. Entities carry shape plus the handful of pure predicates
that only look at their own fields (is_banned, can). Anything that touches a
store is delegated to a collaborator bound onto the User at load time:

  user.tokens -- auth.tokens.TokenManager (access / HMAC token operations)
  user.authz  -- authz.evaluator.PermissionEvaluator (groups / permissions)

The store binds both when it hydrates a User, so callers can write
user.can("users.edit") or user.token_can("posts.read") without knowing which
repository answers the question.

Layer rule: no imports from api/, auth/, authz/, passwords/, or store/ at
runtime. Collaborator types are referenced under TYPE_CHECKING only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from core.exceptions import AuthLogicError

if TYPE_CHECKING:
    from auth.tokens import TokenManager
    from authz.evaluator import PermissionEvaluator

# ---------------------------------------------------------------------------
# Identity types
# ---------------------------------------------------------------------------

# `username` lives on the users table, so it never has an identity row.
ID_TYPE_USERNAME = "username"
ID_TYPE_EMAIL_PASSWORD = "email_password"
ID_TYPE_MAGIC_LINK = "magic-link"
ID_TYPE_EMAIL_2FA = "email_2fa"
ID_TYPE_EMAIL_ACTIVATE = "email_activate"
ID_TYPE_ACCESS_TOKEN = "access_token"
ID_TYPE_HMAC_TOKEN = "hmac_sha256"
ID_TYPE_JWT = "jwt"

STATUS_BANNED = "banned"


@dataclass
class UserIdentity:
    """One secret bound to a user.

    secret holds the primary value (email, token hash, HMAC key, one-time
    code). secret2 holds the auxiliary one (password hash, encrypted HMAC
    signing secret). extra is a JSON string (token scopes, pending-action
    message).
    """

    user_id: int
    type: str
    secret: str
    id: Optional[int] = None
    name: Optional[str] = None
    secret2: Optional[str] = None
    expires: Optional[datetime] = None
    force_reset: bool = False
    extra: Optional[str] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class AccessToken:
    """Read view over an access_token or hmac_sha256 identity.

    raw_token is only populated on the object returned at generation time.
    For access tokens it is the bearer value; for HMAC tokens it is the plain
    signing secret. Neither is ever persisted in clear.
    """

    user_id: int
    type: str
    secret: str
    id: Optional[int] = None
    name: Optional[str] = None
    secret2: Optional[str] = None
    scopes: list[str] = field(default_factory=list)
    expires: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    raw_token: Optional[str] = None

    def can(self, scope: str) -> bool:
        if not self.scopes:
            return False
        if "*" in self.scopes:
            return True
        return scope in self.scopes

    def cant(self, scope: str) -> bool:
        return not self.can(scope)


@dataclass
class Login:
    """Append-only audit row. Never deleted, even when the user is."""

    id_type: str
    identifier: str
    success: bool
    date: datetime
    id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[int] = None


@dataclass
class RememberToken:
    """Remember-me row. hashed_validator is SHA-256 hex; the raw validator is never stored."""

    user_id: int
    selector: str
    hashed_validator: str
    expires: datetime
    id: Optional[int] = None


@dataclass
class User:
    """An account.

    email and password_hash are read from the email_password identity when the
    store loads the user. password is only ever set transiently during
    registration or a password change and is never persisted.

    profile carries any extra "personal" attributes (first name, company...)
    that the password validators should compare against.
    """

    id: Optional[int] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    password_hash: Optional[str] = field(default=None, repr=False)
    status: Optional[str] = None
    status_message: Optional[str] = None
    active: bool = False
    last_active: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    profile: dict[str, Any] = field(default_factory=dict)

    tokens: Optional[TokenManager] = field(default=None, repr=False, compare=False)
    authz: Optional[PermissionEvaluator] = field(default=None, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Ban status
    # ------------------------------------------------------------------

    def is_banned(self) -> bool:
        return self.status == STATUS_BANNED

    def get_ban_message(self) -> Optional[str]:
        return self.status_message

    def personal_value(self, name: str) -> Optional[str]:
        """Return a personal attribute by name, from the entity or its profile."""
        value = getattr(self, name, None) if name in _PERSONAL_ATTRS else self.profile.get(name)
        return str(value) if value else None

    # ------------------------------------------------------------------
    # Token delegation (auth.tokens.TokenManager)
    # ------------------------------------------------------------------

    def _token_manager(self) -> TokenManager:
        if self.tokens is None:
            raise AuthLogicError(f"User {self.id!r} has no token manager bound. Load users through the UserStore.")
        return self.tokens

    def generate_access_token(self, name: str, scopes: Optional[list[str]] = None) -> AccessToken:
        return self._token_manager().generate_access_token(name, scopes)

    def generate_hmac_token(self, name: str, scopes: Optional[list[str]] = None) -> AccessToken:
        return self._token_manager().generate_hmac_token(name, scopes)

    def current_access_token(self) -> Optional[AccessToken]:
        return self.tokens.current_access_token if self.tokens else None

    def current_hmac_token(self) -> Optional[AccessToken]:
        return self.tokens.current_hmac_token if self.tokens else None

    def token_can(self, scope: str) -> bool:
        return self.tokens is not None and self.tokens.token_can(scope)

    def token_cant(self, scope: str) -> bool:
        return not self.token_can(scope)

    def hmac_token_can(self, scope: str) -> bool:
        return self.tokens is not None and self.tokens.hmac_token_can(scope)

    def hmac_token_cant(self, scope: str) -> bool:
        return not self.hmac_token_can(scope)

    # ------------------------------------------------------------------
    # Authorization delegation (authz.evaluator.PermissionEvaluator)
    # ------------------------------------------------------------------

    def _authorizer(self) -> PermissionEvaluator:
        if self.authz is None:
            raise AuthLogicError(f"User {self.id!r} has no permission evaluator bound. Load users through the UserStore.")
        return self.authz

    def can(self, *permissions: str) -> bool:
        return self._authorizer().can(*permissions)

    def has_permission(self, permission: str) -> bool:
        return self._authorizer().has_permission(permission)

    def in_group(self, *groups: str) -> bool:
        return self._authorizer().in_group(*groups)

    def get_groups(self) -> list[str]:
        return self._authorizer().get_groups()

    def get_permissions(self) -> list[str]:
        return self._authorizer().get_permissions()

    def add_group(self, *groups: str) -> User:
        self._authorizer().add_group(*groups)
        return self

    def remove_group(self, *groups: str) -> User:
        self._authorizer().remove_group(*groups)
        return self

    def sync_groups(self, *groups: str) -> User:
        self._authorizer().sync_groups(*groups)
        return self

    def add_permission(self, *permissions: str) -> User:
        self._authorizer().add_permission(*permissions)
        return self

    def remove_permission(self, *permissions: str) -> User:
        self._authorizer().remove_permission(*permissions)
        return self

    def sync_permissions(self, *permissions: str) -> User:
        self._authorizer().sync_permissions(*permissions)
        return self


_PERSONAL_ATTRS = frozenset({"username", "email"})


@dataclass
class Group:
    """A configured group and its slice of the permission matrix."""

    alias: str
    title: str
    description: str = ""
    permissions: list[str] = field(default_factory=list)

    def can(self, permission: str) -> bool:
        if permission in self.permissions:
            return True
        scope = permission.split(".", 1)[0]
        return f"{scope}.*" in self.permissions
