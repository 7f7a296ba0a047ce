"""
tests/conftest.py -- Shared test fixtures for socialfeed tests.

This module provides:
  - make_stores(): isolated named shared-memory SQLite stores (users + social)
  - FakeRedis: in-process stand-in for the redis client used by UserCache
  - patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with the fixed-window gate disabled
  - signup: registers, activates and logs in a fresh user through the API

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from typing import Optional

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from api.limiter import limiter
from api.main import app
from auth.store import UserStore
from auth.tokens import Authenticator
from cache.store import UserCache
from core.config import get_settings
from core.ratelimiter import FixedWindowRateLimiter
from social.store import SocialStore

DEFAULT_PASSWORD = "password123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_url(name: str) -> str:
    return f"sqlite:///file:test_{name}?mode=memory&cache=shared&uri=true"


def make_stores(db_suffix: str) -> tuple[UserStore, SocialStore]:
    """Create isolated stores sharing one named in-memory database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'social').
    """
    user_store = UserStore(db_url=memory_url(db_suffix))
    social_store = SocialStore(engine=user_store.engine)
    return user_store, social_store


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


# ---------------------------------------------------------------------------
# Redis double
# ---------------------------------------------------------------------------


class FakeRedis:
    """Dict-backed stand-in for redis.Redis covering what UserCache calls.

    Set fail=True to make every call raise a redis ConnectionError, which is
    how a real client reports an unreachable server.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    def ping(self) -> bool:
        self._check()
        return True

    def get(self, key: str) -> Optional[str]:
        self._check()
        return self.data.get(key)

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


def patch_lifespan(
    user_store: UserStore,
    social_store: SocialStore,
    user_cache: Optional[UserCache] = None,
    *,
    rate_limit_enabled: bool = False,
    max_requests: int = 20,
    window: float = 5.0,
):
    """Return an async context manager that replaces the real lifespan.

    The rate limiter is built inside the lifespan so it belongs to the
    TestClient's event loop.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.social_store = social_store
        app.state.user_cache = user_cache
        app.state.authenticator = Authenticator.from_settings(get_settings())
        app.state.rate_limiter = FixedWindowRateLimiter(max_requests, window, enabled=rate_limit_enabled)
        yield
        await app.state.rate_limiter.close()

    return test_lifespan


@pytest.fixture(autouse=True)
def _disable_login_limit() -> Generator[None, None, None]:
    """Keep slowapi's per-route login limit out of tests that do not target it."""
    original = limiter.enabled
    limiter.enabled = False
    yield
    limiter.enabled = original


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, user_store) for API integration tests.

    One client and one database per test module. The fixed-window gate is
    disabled here; tests/test_app_wiring.py builds its own clients.
    """
    user_store, social_store = make_stores(f"api_{uuid.uuid4().hex[:8]}")
    app.router.lifespan_context = patch_lifespan(user_store, social_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store

    user_store.close()


def register_and_login(
    client: TestClient, email: Optional[str] = None, password: str = DEFAULT_PASSWORD
) -> tuple[int, str]:
    """Register, activate and log in a new user through the API. Returns (user_id, session_token)."""
    email = email or unique_email()
    registered = client.post("/v1/register", json={"email": email, "password": password})
    assert registered.status_code == 201, registered.text
    data = registered.json()["data"]
    activated = client.put(f"/v1/users/activate/{data['token']}")
    assert activated.status_code == 200, activated.text
    login = client.post("/v1/login", json={"email": email, "password": password})
    assert login.status_code == 200, login.text
    return data["user"]["id"], login.json()["token"]


@pytest.fixture
def signup(api_client: tuple[TestClient, UserStore]) -> Callable[..., tuple[int, str]]:
    """Return register_and_login bound to the module's client."""
    client, _store = api_client

    def _signup(email: Optional[str] = None, password: str = DEFAULT_PASSWORD) -> tuple[int, str]:
        return register_and_login(client, email, password)

    return _signup


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
