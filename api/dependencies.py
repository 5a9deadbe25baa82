"""
api/dependencies.py -- FastAPI Depends() helpers for authentication.

The auth core never sees a FastAPI Request. get_request_context() copies
what the authenticators need (session, headers, cookies, body, client) into
a RequestContext and parks it on request.state; the apply_auth_context
middleware in api/main.py writes the cookies and Cache-Control header the
authenticators asked for back onto whatever response goes out, including
error responses.

Guards, all returning the authenticated core.models.User:

  require_session / require_tokens / require_hmac / require_jwt
      one specific strategy
  require_chain
      the first strategy of Settings.authentication_chain that is logged in
  require_permission(*perms) / require_group(*groups)
      chain auth plus an authorization check (403 on failure)
  require_password_current
      chain auth plus the force-reset flag (403 while a reset is pending)

Every guard stamps last_active when Settings.record_active_date is on.

Layer rule: this module and api/routes/ are the only code that imports
fastapi. auth/ stays framework-neutral.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, Request
from starlette.responses import Response

from core.exceptions import AuthLogicError
from core.messages import message
from core.models import User
from auth.authentication import Auth
from auth.authenticators import SessionAuthenticator, StatelessAuthenticator
from auth.context import RequestContext, SessionBag
from auth.service import AuthService


def get_service(request: Request) -> AuthService:
    return request.app.state.auth_service


async def get_request_context(request: Request) -> RequestContext:
    ctx = getattr(request.state, "auth_ctx", None)
    if ctx is None:
        ctx = RequestContext(
            session=SessionBag(request.session),
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            headers=dict(request.headers),
            cookies=dict(request.cookies),
            body=await request.body(),
        )
        request.state.auth_ctx = ctx
    return ctx


def get_auth(
    ctx: RequestContext = Depends(get_request_context),
    service: AuthService = Depends(get_service),
) -> Auth:
    """The request's Auth facade. FastAPI caches it, so every guard shares one instance."""
    return service.for_request(ctx)


def apply_context(ctx: RequestContext, response: Response) -> None:
    """Copy outgoing cookie instructions and the no-store flag onto response."""
    for cookie in ctx.outgoing_cookies:
        if cookie.delete:
            response.delete_cookie(cookie.name)
        else:
            response.set_cookie(
                cookie.name,
                cookie.value,
                max_age=cookie.max_age,
                secure=cookie.secure,
                httponly=cookie.httponly,
                samesite=cookie.samesite,
            )
    if ctx.no_cache:
        response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def _unauthorized(code: str = "unauthorized", text: str = "Authentication required.") -> HTTPException:
    return HTTPException(status_code=401, detail={"code": code, "message": text})


def _forbidden(code: str, text: str) -> HTTPException:
    return HTTPException(status_code=403, detail={"code": code, "message": text})


def _finish(auth: Auth, service: AuthService, user: User) -> User:
    if service.settings.record_active_date:
        auth.record_active_date()
    return user


def _require(alias: str) -> Callable[..., User]:
    def dependency(auth: Auth = Depends(get_auth), service: AuthService = Depends(get_service)) -> User:
        authenticator = auth.set_authenticator(alias).get_authenticator()

        if isinstance(authenticator, StatelessAuthenticator):
            if authenticator.get_user() is None:
                result = authenticator.attempt(authenticator.request_credentials())
                if not result.is_ok():
                    raise _unauthorized(result.code or "unauthorized", result.reason or "Authentication required.")
            return _finish(auth, service, authenticator.get_user())

        if not isinstance(authenticator, SessionAuthenticator):
            raise AuthLogicError(f"Authenticator {alias!r} is neither stateless nor session based.")
        if authenticator.is_pending():
            raise _unauthorized("pendingAction", authenticator.get_pending_message() or message("noPendingAction"))
        if not authenticator.logged_in():
            raise _unauthorized()
        user = authenticator.get_user()
        if not service.is_activated(user):
            raise _forbidden("notActivated", message("notActivated"))
        return _finish(auth, service, user)

    dependency.__name__ = f"require_{alias}"
    return dependency


require_session = _require("session")
require_tokens = _require("tokens")
require_hmac = _require("hmac")
require_jwt = _require("jwt")


def require_chain(auth: Auth = Depends(get_auth), service: AuthService = Depends(get_service)) -> User:
    """Authenticate with the first strategy of the configured chain that accepts the request."""
    authenticator = auth.chain()
    if authenticator is None:
        raise _unauthorized()
    return _finish(auth, service, authenticator.get_user())


def require_permission(*permissions: str) -> Callable[..., User]:
    """Guard factory: the user must hold at least one of permissions.

    Usage:
        @router.get("/admin", dependencies=[Depends(require_permission("admin.access"))])
    """

    def dependency(user: User = Depends(require_chain)) -> User:
        if not user.can(*permissions):
            raise _forbidden("notEnoughPrivilege", message("notEnoughPrivilege"))
        return user

    return dependency


def require_group(*groups: str) -> Callable[..., User]:
    def dependency(user: User = Depends(require_chain)) -> User:
        if not user.in_group(*groups):
            raise _forbidden("notEnoughPrivilege", message("notEnoughPrivilege"))
        return user

    return dependency


def require_password_current(
    user: User = Depends(require_chain),
    service: AuthService = Depends(get_service),
) -> User:
    if service.identities.requires_password_reset(user):
        raise _forbidden("forcePasswordReset", message("forcePasswordReset"))
    return user
