"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST   /api/v1/auth/login                 -- email + password session login
  POST   /api/v1/auth/logout                -- end the session, purge remember-me
  POST   /api/v1/auth/register              -- create an account and log it in
  GET    /api/v1/auth/me                    -- current user (chain auth)
  GET    /api/v1/auth/action                -- show the pending action step
  POST   /api/v1/auth/action/handle         -- action second step (email 2FA)
  POST   /api/v1/auth/action/verify         -- submit the action code
  POST   /api/v1/auth/magic-link            -- mail a one-time login link
  GET    /api/v1/auth/magic-link/verify     -- consume the link
  POST   /api/v1/auth/tokens                -- issue a bearer access token
  DELETE /api/v1/auth/tokens/{id}           -- revoke an access token
  POST   /api/v1/auth/hmac-keys             -- issue an HMAC key pair
  POST   /api/v1/auth/jwt                   -- issue a JWT for the session user
  GET    /api/v1/auth/users                 -- list users (users.edit permission)
  GET    /api/v1/auth/groups                -- configured groups (admin groups)

Handlers stay thin: every decision lives in auth/. Expected failures come
back as Result values and are turned into the {"error": {...}} envelope
here; AuthError exceptions are mapped by the handler in api/main.py.

Security:
  [H2] Form routes are rate-limited per client IP (Settings.auth_rate_limit).
  [M5] Cache-Control: no-store on every login / register response.
  Token creation requires a session login, so a leaked bearer token cannot
  mint more tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.dependencies import (
    get_auth,
    get_request_context,
    get_service,
    require_chain,
    require_group,
    require_password_current,
    require_permission,
    require_session,
)
from api.limiter import auth_rate_limit, limiter
from api.models import (
    ActionHandleRequest,
    ActionResponse,
    ActionVerifyRequest,
    JwtCreate,
    JwtResponse,
    LoginRequest,
    LoginResponse,
    MagicLinkRequest,
    MessageResponse,
    RegisterRequest,
    TokenCreate,
    TokenResponse,
    UserResponse,
)
from core.messages import message
from core.models import Group, User
from core.result import Result
from auth.actions import Action
from auth.authentication import Auth
from auth.authenticators import SessionAuthenticator
from auth.context import RequestContext
from auth.magic_link import MagicLinks
from auth.registration import Registrar
from auth.service import AuthService

# Auth policy:
# - login, register, magic-link, action/*: public, rate-limited
# - logout:                                public
# - me:                                    chain auth
# - tokens, hmac-keys, jwt:                session auth only
# - users:                                 users.edit permission, no pending password reset
# - groups:                                superadmin or admin group
router = APIRouter()


def _fail(result: Result, status_code: int = 401) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"code": result.code or "auth_failed", "message": result.reason or "Request failed."},
    )


def _login_response(session: SessionAuthenticator, user: User) -> LoginResponse:
    if session.is_pending():
        action = session.get_action()
        return LoginResponse(
            user_id=user.id,
            pending=True,
            action=action.alias if action else None,
            message=session.get_pending_message(),
        )
    return LoginResponse(user_id=user.id)


def _pending_action(session: SessionAuthenticator) -> Action:
    action = session.get_action() if session.is_pending() else None
    if action is None:
        raise HTTPException(status_code=404, detail={"code": "noPendingAction", "message": message("noPendingAction")})
    return action


def _already_logged_in(session: SessionAuthenticator) -> None:
    if session.logged_in() or session.is_pending():
        raise HTTPException(status_code=400, detail={"code": "alreadyLoggedIn", "message": message("alreadyLoggedIn")})


# ---------------------------------------------------------------------------
# Session login / logout / registration
# ---------------------------------------------------------------------------


@limiter.limit(auth_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    auth: Auth = Depends(get_auth),
    ctx: RequestContext = Depends(get_request_context),
) -> LoginResponse:
    """Log in with email and password.

    A configured login action (email 2FA) leaves the session pending; the
    response says so and the client continues at GET /auth/action.
    """
    ctx.no_cache = True  # [M5]
    session = auth.session()
    _already_logged_in(session)

    result = session.remember(body.remember).attempt({"email": body.email, "password": body.password})
    if not result.is_ok():
        raise _fail(result)
    return _login_response(session, result.extra_info)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(auth: Auth = Depends(get_auth)) -> MessageResponse:
    auth.session().logout()
    return MessageResponse(message="Logged out.")


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/register", response_model=LoginResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    auth: Auth = Depends(get_auth),
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_service),
) -> LoginResponse:
    ctx.no_cache = True  # [M5]
    result = Registrar(service).register(auth, body.model_dump())
    if not result.is_ok():
        status_code = 403 if result.code == "registerDisabled" else 400
        raise _fail(result, status_code)
    return _login_response(auth.session(), result.extra_info)


@router.get("/auth/me", response_model=UserResponse)
def me(user: User = Depends(require_chain)) -> UserResponse:
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Pending actions
# ---------------------------------------------------------------------------


@router.get("/auth/action", response_model=ActionResponse)
def action_show(
    auth: Auth = Depends(get_auth),
    ctx: RequestContext = Depends(get_request_context),
) -> ActionResponse:
    session = auth.session()
    action = _pending_action(session)
    outcome = action.show(session, ctx)
    return ActionResponse(action=action.alias, step=outcome.step, message=outcome.message)


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/action/handle", response_model=ActionResponse)
def action_handle(
    request: Request,
    body: ActionHandleRequest,
    auth: Auth = Depends(get_auth),
    ctx: RequestContext = Depends(get_request_context),
) -> ActionResponse:
    session = auth.session()
    action = _pending_action(session)
    outcome = action.handle(session, ctx, body.model_dump())
    if not outcome.success:
        raise HTTPException(status_code=400, detail={"code": outcome.code, "message": outcome.message})
    return ActionResponse(action=action.alias, step=outcome.step, message=outcome.message)


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/action/verify", response_model=ActionResponse)
def action_verify(
    request: Request,
    body: ActionVerifyRequest,
    auth: Auth = Depends(get_auth),
    ctx: RequestContext = Depends(get_request_context),
) -> ActionResponse:
    session = auth.session()
    action = _pending_action(session)
    outcome = action.verify(session, ctx, body.model_dump())
    if not outcome.success:
        raise HTTPException(status_code=400, detail={"code": outcome.code, "message": outcome.message})
    return ActionResponse(action=action.alias, step=outcome.step, message=outcome.message)


# ---------------------------------------------------------------------------
# Magic link
# ---------------------------------------------------------------------------


@limiter.limit(auth_rate_limit)  # [H2]
@router.post("/auth/magic-link", response_model=MessageResponse)
def magic_link_request(
    request: Request,
    body: MagicLinkRequest,
    auth: Auth = Depends(get_auth),
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_service),
) -> MessageResponse:
    """Mail a login link. The answer is the same whether or not the address is known."""
    _already_logged_in(auth.session())
    result = MagicLinks(service).request(ctx, body.email)
    if not result.is_ok():
        raise _fail(result, 403)
    return MessageResponse(message="If the address is registered, a login link is on its way.")


@limiter.limit(auth_rate_limit)  # [H2]
@router.get("/auth/magic-link/verify", response_model=LoginResponse)
def magic_link_verify(
    request: Request,
    token: str = "",
    auth: Auth = Depends(get_auth),
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_service),
) -> LoginResponse:
    ctx.no_cache = True  # [M5]
    session = auth.session()
    _already_logged_in(session)
    result = MagicLinks(service).verify(auth, token)
    if not result.is_ok():
        raise _fail(result, 403 if result.code == "magicLinkDisabled" else 401)
    return _login_response(session, result.extra_info)


# ---------------------------------------------------------------------------
# Token issuance (session users only)
# ---------------------------------------------------------------------------


@router.post("/auth/tokens", response_model=TokenResponse, status_code=201)
def create_access_token(body: TokenCreate, user: User = Depends(require_session)) -> TokenResponse:
    """Generate a bearer token. The raw value is shown ONCE and only its hash is stored."""
    return TokenResponse.from_access_token(user.generate_access_token(body.name, body.scopes))


@router.delete("/auth/tokens/{token_id}", status_code=204)
def revoke_access_token(token_id: int, user: User = Depends(require_session)) -> Response:
    """Revoke one of the caller's tokens. Ownership is part of the store query."""
    if not user.tokens.revoke_access_token_by_id(token_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Token not found."})
    return Response(status_code=204)


@router.post("/auth/hmac-keys", response_model=TokenResponse, status_code=201)
def create_hmac_key(body: TokenCreate, user: User = Depends(require_session)) -> TokenResponse:
    """Generate an HMAC key pair. The signing secret is shown ONCE; it is stored encrypted."""
    return TokenResponse.from_hmac_token(user.generate_hmac_token(body.name, body.scopes))


@router.post("/auth/jwt", response_model=JwtResponse)
def create_jwt(
    body: JwtCreate,
    user: User = Depends(require_session),
    service: AuthService = Depends(get_service),
) -> JwtResponse:
    return JwtResponse(access_token=service.jwt.generate_token(user, ttl=body.ttl))


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get(
    "/auth/users",
    response_model=list[UserResponse],
    dependencies=[Depends(require_permission("users.edit")), Depends(require_password_current)],
)
def list_users(service: AuthService = Depends(get_service)) -> list[UserResponse]:
    return [UserResponse.from_user(user) for user in service.users.list_users()]


@router.get("/auth/groups", dependencies=[Depends(require_group("superadmin", "admin"))])
def list_groups(service: AuthService = Depends(get_service)) -> list[dict]:
    groups: list[Group] = [service.groups.info(alias) for alias in service.groups.aliases()]
    return [
        {"alias": g.alias, "title": g.title, "description": g.description, "permissions": g.permissions}
        for g in groups
        if g is not None
    ]
