"""
tests/conftest.py -- Shared test fixtures for the gatehouse test-suite.

This module provides:
  - FrozenClock: an injectable "now" that tests advance explicitly
  - make_settings(): Settings with fast bcrypt, a JWT keyset, an HMAC key
    ring and a private named in-memory database
  - service: an AuthService over that database with a LoggingMailer
  - make_user / add_user: activated users in the default group
  - make_service: factory for extra AuthService instances with other settings
  - browser: a fake user agent that carries the session and cookies from one
    RequestContext to the next, the way a real browser would
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

AUTH_DEBUG must be set before any gatehouse import so get_settings() can
auto-generate SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# CRITICAL: Set AUTH_DEBUG before any core/auth import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("AUTH_DEBUG", "true")

import pytest
from cryptography.fernet import Fernet

from core.config import Settings
from core.models import User
from auth.authentication import Auth
from auth.context import RequestContext, SessionBag
from auth.mail import LoggingMailer
from auth.service import AuthService
from store.database import Database

JWT_SECRET = "test-jwt-secret-that-is-long-enough-for-hs256"
PASSWORD = "correct horse battery staple"


class FrozenClock:
    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def memory_db_url(name: str = "") -> str:
    return f"sqlite:///file:gatehouse_{name or uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "debug": True,
        "secret_key": "t" * 48,
        "database_url": memory_db_url(),
        "hash_cost": 4,
        "tokens": {"hmac_encryption_keys": {"k1": Fernet.generate_key().decode()}},
        "jwt": {"keys": {"default": [{"kid": "", "alg": "HS256", "secret": JWT_SECRET}]}},
    }
    values.update(overrides)
    return Settings(**values)


class Browser:
    """One visitor: a session dict and a cookie jar shared by successive requests."""

    def __init__(self, service: AuthService) -> None:
        self.service = service
        self.session_data: dict[str, Any] = {}
        self.cookies: dict[str, str] = {}
        self.ctx: Optional[RequestContext] = None

    def request(self, headers: Optional[dict[str, str]] = None, body: bytes = b"") -> Auth:
        """Start a new request and return its Auth facade."""
        if self.ctx is not None:
            self.cookies = dict(self.ctx.cookies)
        self.ctx = RequestContext(
            session=SessionBag(self.session_data),
            ip_address="203.0.113.7",
            user_agent="pytest-browser",
            headers=headers or {},
            cookies=dict(self.cookies),
            body=body,
        )
        return self.service.for_request(self.ctx)


def add_user(svc: AuthService, email: str = "alice@example.com", username: Optional[str] = None, password: str = PASSWORD, **fields: Any) -> User:
    """Create an activated user with password, in the default group, and return it freshly loaded."""
    user = User(email=email, username=username, active=True, **fields)
    user.password_hash = svc.passwords.hash(password)
    svc.users.create_user(user)
    user = svc.users.find_by_id(user.id)
    user.add_group(svc.groups.default_group)
    return user


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mailer() -> LoggingMailer:
    return LoggingMailer()


@pytest.fixture
def service(settings: Settings, clock: FrozenClock, mailer: LoggingMailer) -> Generator[AuthService, None, None]:
    svc = AuthService(settings, clock=clock, mailer=mailer)
    yield svc
    svc.close()


@pytest.fixture
def make_user(service: AuthService):
    """Return a factory creating an activated user with PASSWORD, in the default group."""

    def _make(email: str = "alice@example.com", username: Optional[str] = None, password: str = PASSWORD, **fields: Any) -> User:
        return add_user(service, email, username, password, **fields)

    return _make


@pytest.fixture
def make_service(clock: FrozenClock, mailer: LoggingMailer):
    """Return a factory for an AuthService built from make_settings(**overrides).

    Every service shares the test clock and mailer. Pass db to reuse another
    service's database; only services that opened their own are closed.
    """
    owned: list[AuthService] = []

    def _make(db: Optional[Database] = None, **overrides: Any) -> AuthService:
        svc = AuthService(make_settings(**overrides), db=db, clock=clock, mailer=mailer)
        if db is None:
            owned.append(svc)
        return svc

    yield _make
    for svc in owned:
        svc.close()


@pytest.fixture
def browser(service: AuthService) -> Browser:
    return Browser(service)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(svc: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test AuthService into app.state so TestClient routes hit an
    isolated in-memory database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = svc
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_service() -> Generator[AuthService, None, None]:
    svc = AuthService(
        make_settings(authentication_chain=("session", "tokens", "jwt")),
        clock=FrozenClock(datetime.now(timezone.utc)),
        mailer=LoggingMailer(),
    )
    yield svc
    svc.close()


@pytest.fixture(scope="module")
def api_client(api_service: AuthService):
    """Yield a TestClient over the real app, wired to api_service.

    Rate limiting is switched off so the suite's many logins from one
    address do not trip [H2]; TestRateLimit switches it back on.
    """
    from fastapi.testclient import TestClient

    from api.limiter import limiter
    from api.main import app

    app.router.lifespan_context = _patch_lifespan(api_service)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    limiter.enabled = True
