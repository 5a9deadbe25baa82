"""
api/main.py -- FastAPI application entry point for gatehouse.

Exposes the auth core over HTTP: session login with remember-me and
post-login actions, registration, magic links, token issuance, and guards
for every authenticator.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. SessionMiddleware     -- signed-cookie session the session authenticator reads
  2. apply_auth_context    -- writes remember-me cookies / no-store onto the response
  3. log_requests          -- one access-log line per request
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the AuthService (database, stores, password service, JWT
manager) on startup and closes the database on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.dependencies import apply_context
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from core.config import get_settings
from core.exceptions import AuthError
from auth.service import AuthService

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the AuthService on startup and release it on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Tests replace this through app.router.lifespan_context to wire
    an AuthService over an in-memory database.
    """
    logger.info("gatehouse API starting up")
    app.state.auth_service = AuthService(settings)
    logger.info(
        "Auth initialized (authenticators=%s, chain=%s)",
        ",".join(settings.authenticators),
        ",".join(settings.authentication_chain),
    )

    yield

    app.state.auth_service.close()
    logger.info("gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="gatehouse API",
    description="Session, bearer token, HMAC and JWT authentication with group / permission authorization.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() prepends, so the last registration is the outermost
# layer. Register innermost first: SlowAPI, then the decorators below,
# then SessionMiddleware at the bottom of the module.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


@app.middleware("http")
async def apply_auth_context(request: Request, call_next):
    """Apply the cookies and no-store flag the authenticators set during the request.

    request.state is shared with the route's Request through the ASGI scope,
    so the RequestContext built by api.dependencies is visible here after
    call_next, on success and error responses alike.
    """
    response = await call_next(request)
    ctx = getattr(request.state, "auth_ctx", None)
    if ctx is not None:
        apply_context(ctx, response)
    return response


# The session authenticator keeps the user id here, so the cookie is signed
# with the [M6] SECRET_KEY and marked https-only when secure cookies are on.
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    same_site="lax",
    https_only=settings.session.secure_cookies,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the gatehouse exception taxonomy onto the error envelope.

    Server-side classes (logic, configuration, infrastructure) are logged and
    answered with a generic message; their text may describe internals.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        text = "An unexpected error occurred."
    else:
        text = exc.message
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=text)).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; use it directly as the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit: load balancer and monitoring checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
