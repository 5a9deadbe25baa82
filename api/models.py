"""
API request and response models for the gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import AccessToken, User

# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Body for POST /api/v1/auth/login.

    Only email + password is accepted over HTTP. username logins are a
    valid_fields configuration option for library callers.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=4096)
    remember: bool = False


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=4096)
    username: Optional[str] = Field(default=None, max_length=30)


class ActionHandleRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=254)


class ActionVerifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=64)


class MagicLinkRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=254)


class TokenCreate(BaseModel):
    """Body for POST /api/v1/auth/tokens and /api/v1/auth/hmac-keys."""

    name: str = Field(min_length=1, max_length=100)
    scopes: list[str] = Field(default_factory=lambda: ["*"], max_length=50)


class JwtCreate(BaseModel):
    ttl: Optional[int] = Field(default=None, gt=0, le=86400 * 30)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: Optional[str] = None
    email: Optional[str] = None
    active: bool
    groups: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            active=user.active,
            groups=user.get_groups(),
            permissions=user.get_permissions(),
        )


class LoginResponse(BaseModel):
    """Result of a login or registration. pending is True while an action is outstanding."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    pending: bool = False
    action: Optional[str] = None
    message: Optional[str] = None


class ActionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str
    step: str
    message: Optional[str] = None


class TokenResponse(BaseModel):
    """A freshly issued access or HMAC token. The raw value is shown ONCE."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    token: str
    secret: Optional[str] = None

    @classmethod
    def from_access_token(cls, token: AccessToken) -> "TokenResponse":
        return cls(id=token.id, name=token.name, scopes=token.scopes, token=token.raw_token or "")

    @classmethod
    def from_hmac_token(cls, token: AccessToken) -> "TokenResponse":
        return cls(id=token.id, name=token.name, scopes=token.scopes, token=token.secret, secret=token.raw_token)


class JwtResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
