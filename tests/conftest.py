"""
tests/conftest.py -- Shared test fixtures for the auth service tests.

This module provides:
  - InMemoryRedis / UnreachableRedis: redis-py client doubles for the session store
  - FrozenClock: injectable clock for token expiry boundaries
  - make_user_store(): isolated named shared-memory SQLite user store
  - make_service(): AuthService wired to test stores
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus admin / super_admin tokens for API tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import:
  DEBUG=true               -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4          -- keeps every hash in the suite fast
  RATE_LIMIT_ENABLED=false -- the shared limiter would otherwise trip mid-suite
  ALLOWED_HOSTS            -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from api.main import app
from auth.models import User
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings
from sessions.store import SessionStore

# ---------------------------------------------------------------------------
# Redis client doubles
# ---------------------------------------------------------------------------


class InMemoryRedis:
    """The slice of the redis.Redis API that SessionStore uses, with TTLs."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self.closed = False

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return entry

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._data[key] = (value, time.monotonic() + ex if ex else None)
        return True

    def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self._data.pop(k, None) is not None)

    def exists(self, *keys: str) -> int:
        return sum(1 for k in keys if self._live(k) is not None)

    def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return round(entry[1] - time.monotonic())

    def expire_now(self, key: str) -> None:
        """Force a key past its TTL."""
        if key in self._data:
            value, _ = self._data[key]
            self._data[key] = (value, time.monotonic() - 1)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


class UnreachableRedis:
    """Every command fails the way redis-py does when the server is down."""

    def _fail(self, *args, **kwargs):
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    set = get = delete = exists = ping = close = _fail


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock for TokenIssuer. Time moves only via advance()."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Store and service helpers
# ---------------------------------------------------------------------------


def make_user_store(db_suffix: str | None = None) -> UserStore:
    """Create an isolated named shared-memory SQLite user store.

    Args:
        db_suffix: Appended to the DB name so modules never share state.
                   A random suffix is used when omitted.
    """
    name = db_suffix or uuid.uuid4().hex
    return UserStore(db_url=f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true")


def make_service(
    user_store: UserStore,
    redis_client=None,
    *,
    clock=None,
    settings: Settings | None = None,
) -> AuthService:
    settings = settings or get_settings()
    tokens = (
        TokenIssuer.from_settings(settings, clock=clock) if clock is not None else TokenIssuer.from_settings(settings)
    )
    return AuthService(
        users=user_store,
        sessions=SessionStore(redis_client if redis_client is not None else InMemoryRedis()),
        tokens=tokens,
        settings=settings,
    )


def seed_user(
    user_store: UserStore,
    email: str,
    password: str = "Passw0rd!",
    role: str = "customer",
    first_name: str = "Test",
    last_name: str = "User",
    is_active: bool = True,
) -> str:
    return user_store.create_user(
        User(
            email=email,
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=is_active,
        )
    )


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated stores rather than a real database and a real Redis.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.auth_service = service
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


class ApiContext(NamedTuple):
    client: TestClient
    service: AuthService
    user_store: UserStore
    redis: InMemoryRedis
    admin_token: str
    admin_id: str
    super_admin_token: str
    super_admin_id: str


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores. An
    admin and a super_admin are created up front and logged in through the
    service so their tokens are ordinary, fully valid access tokens.
    """
    user_store = make_user_store()
    redis_client = InMemoryRedis()
    session_store = SessionStore(redis_client)
    service = AuthService(
        users=user_store,
        sessions=session_store,
        tokens=TokenIssuer.from_settings(get_settings()),
        settings=get_settings(),
    )

    admin_id = seed_user(user_store, "admin@example.com", "AdminPass1!", role="admin", first_name="Ada")
    super_id = seed_user(user_store, "root@example.com", "RootPass1!", role="super_admin", first_name="Root")
    admin_token = service.login("admin@example.com", "AdminPass1!").access_token
    super_token = service.login("root@example.com", "RootPass1!").access_token

    app.router.lifespan_context = _patch_lifespan(user_store, session_store, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            service=service,
            user_store=user_store,
            redis=redis_client,
            admin_token=admin_token,
            admin_id=admin_id,
            super_admin_token=super_token,
            super_admin_id=super_id,
        )

    user_store.close()


# ---------------------------------------------------------------------------
# Function-scoped fixtures for unit tests
# ---------------------------------------------------------------------------


@pytest.fixture()
def user_store() -> Generator[UserStore, None, None]:
    store = make_user_store()
    yield store
    store.close()


@pytest.fixture()
def redis_client() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture()
def unreachable_redis() -> UnreachableRedis:
    return UnreachableRedis()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def issuer(clock: FrozenClock) -> TokenIssuer:
    return TokenIssuer.from_settings(get_settings(), clock=clock)


@pytest.fixture()
def service(user_store: UserStore, redis_client: InMemoryRedis, clock: FrozenClock) -> AuthService:
    """AuthService over fresh stores with a frozen token clock."""
    return make_service(user_store, redis_client, clock=clock)


@pytest.fixture()
def seed():
    """seed(store, email, password=..., role=...) -> user id."""
    return seed_user


@pytest.fixture()
def build_service():
    """Factory for services that need their own Redis double or Settings."""
    return make_service


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_header():
    return bearer
