"""
tests/conftest.py -- Shared test fixtures for Marquee unit and integration tests.

This module provides:
  - make_engine(): isolated named shared-memory SQLite engine per fixture
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - api: an ApiEnv (TestClient + the stores/services behind it) per test
  - create_user(): insert a user with chosen activation/permissions and a bearer token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Each fixture gets a unique name so tests never share rows.

Environment variables must be set before any application import:
  DEBUG=true             -- get_settings() auto-generates SECRET_KEY
  LOGIN_RATE_LIMIT       -- the slowapi login limit is shared process-wide;
                            raise it so the suite never trips it
  LIMITER_ENABLED=false  -- the global bucket is opted into per test
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta

# CRITICAL: Set env before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")
os.environ.setdefault("LIMITER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.encoder import Encoder
from api.limiter import RateLimiter
from api.main import app
from auth.models import SCOPE_AUTHENTICATION, Token, User
from auth.passwords import PasswordHasher
from auth.store import PermissionStore, TokenStore, UserStore
from auth.tokens import TokenService
from core.config import get_settings
from core.db import create_db_engine
from movies.store import MovieStore

# bcrypt's minimum cost -- the suite hashes hundreds of passwords.
TEST_HASHER = PasswordHasher(rounds=4)

DEFAULT_PASSWORD = "pa55word-long"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Captures activation mails instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[tuple[User, Token]] = []

    def send_activation(self, user: User, token: Token) -> None:
        self.sent.append((user, token))

    def last_token_for(self, email: str) -> str:
        for user, token in reversed(self.sent):
            if user.email == email:
                return token.plaintext
        raise AssertionError(f"no activation mail sent to {email}")


class FailingEncoder(Encoder):
    """An encoder whose every write fails, for 500-path tests."""

    def encode(self, payload) -> bytes:
        raise RuntimeError("marshalling failed")


class FakeClock:
    """Settable clock for TokenService (datetime) or RateLimiter (float seconds)."""

    def __init__(self, start) -> None:
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_engine(prefix: str = "test") -> Engine:
    name = f"{prefix}_{uuid.uuid4().hex}"
    return create_db_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


@dataclass
class ApiEnv:
    """Everything an integration test may need to arrange or inspect."""

    client: TestClient
    engine: Engine
    user_store: UserStore
    token_store: TokenStore
    permission_store: PermissionStore
    movie_store: MovieStore
    token_service: TokenService
    mailer: RecordingMailer
    rate_limiter: RateLimiter
    extra: dict = field(default_factory=dict)


def _patch_lifespan(state: dict):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel (a MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        for key, value in state.items():
            setattr(app.state, key, value)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()
        app.state.purge_task.cancel()

    return test_lifespan


def _start(
    encoder: Encoder | None = None,
    rate_limiter: RateLimiter | None = None,
    raise_server_exceptions: bool = True,
) -> tuple[ApiEnv, TestClient]:
    engine = make_engine("api")
    user_store = UserStore(engine)
    token_store = TokenStore(engine)
    permission_store = PermissionStore(engine)
    movie_store = MovieStore(engine)
    token_service = TokenService(user_store, token_store, get_settings().secret_key, TEST_HASHER)
    mailer = RecordingMailer()
    if rate_limiter is None:
        rate_limiter = RateLimiter(rps=2, burst=4, enabled=False)
    if encoder is None:
        encoder = Encoder()

    app.router.lifespan_context = _patch_lifespan(
        {
            "engine": engine,
            "user_store": user_store,
            "token_store": token_store,
            "permission_store": permission_store,
            "movie_store": movie_store,
            "hasher": TEST_HASHER,
            "token_service": token_service,
            "mailer": mailer,
            "encoder": encoder,
            "rate_limiter": rate_limiter,
        }
    )
    client = TestClient(app, raise_server_exceptions=raise_server_exceptions)
    env = ApiEnv(
        client=client,
        engine=engine,
        user_store=user_store,
        token_store=token_store,
        permission_store=permission_store,
        movie_store=movie_store,
        token_service=token_service,
        mailer=mailer,
        rate_limiter=rate_limiter,
    )
    return env, client


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def api() -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv whose TestClient hits the real app with isolated stores."""
    env, client = _start()
    with client:
        yield env
    env.engine.dispose()


@pytest.fixture
def api_failing_encoder() -> Generator[ApiEnv, None, None]:
    """ApiEnv whose encoder always fails. Server exceptions are returned as 500s."""
    env, client = _start(encoder=FailingEncoder(), raise_server_exceptions=False)
    with client:
        yield env
    env.engine.dispose()


@pytest.fixture
def api_rate_limited() -> Generator[ApiEnv, None, None]:
    """ApiEnv with the global limiter on: burst 2, no refill."""
    env, client = _start(rate_limiter=RateLimiter(rps=0, burst=2, enabled=True))
    with client:
        yield env
    env.engine.dispose()


# ---------------------------------------------------------------------------
# Arrangement helpers
# ---------------------------------------------------------------------------


def create_user(
    env: ApiEnv,
    email: str = "alice@example.com",
    *,
    activated: bool = True,
    permissions: tuple[str, ...] = (),
    password: str = DEFAULT_PASSWORD,
) -> tuple[User, str]:
    """Insert a user directly and return (user, plaintext authentication token)."""
    user = User(
        name=email.split("@")[0],
        email=email,
        password_hash=TEST_HASHER.hash(password),
        activated=activated,
    )
    env.user_store.insert(user)
    if permissions:
        env.permission_store.add_for_user(user.id, *permissions)
    token = env.token_service.generate(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
    return user, token.plaintext


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
