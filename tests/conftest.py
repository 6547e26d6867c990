"""
tests/conftest.py -- Shared test fixtures for LevelGate unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable UTC clock for session expiry tests
  - store / catalog / gateway: an isolated in-memory engine per test
  - _patch_lifespan(): wires a test store and gateway into app.state
  - api_client: TestClient with an administrator session for API tests
  - clocked_api_client: TestClient over a gateway driven by FakeClock

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixtures because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-test fixtures stay on the calling thread and can use
plain :memory:.

Environment variables must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY in dev mode, uses the cheapest
bcrypt cost, and never rate-limits the test suite.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SESSION_PURGE_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.gateway import AuthGateway
from auth.passwords import PasswordHasher
from auth.store import AuthStore
from core.catalog import Catalog, load_catalog
from core.config import get_settings

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"


class FakeClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def catalog() -> Catalog:
    return load_catalog()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def gateway(store: AuthStore, catalog: Catalog, clock: FakeClock) -> AuthGateway:
    """Gateway over an in-memory store, driven by the fake clock."""
    return AuthGateway.build(store, catalog, get_settings(), clock=clock)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AuthStore:
    """Create an isolated named shared-memory SQLite store.

    The random component keeps modules from seeing each other's rows even if
    a previous module's connections have not been released yet.
    """
    name = f"test_levelgate_{db_suffix}_{uuid.uuid4().hex[:8]}"
    return AuthStore(db_url=f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AuthStore, catalog: Catalog, gateway: AuthGateway):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see an
    isolated test DB rather than DATABASE_URL. No purge task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.catalog = catalog
        app.state.gateway = gateway
        app.state.purge_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The administrator holds administration level 2, which unlocks both
    manage_skills and manage_users in the default catalog. The token is sent
    as a Bearer header by the tests; the client carries no cookie until a
    test logs in through the API.
    """
    store = _make_test_store("api")
    catalog = load_catalog()
    gateway = AuthGateway.build(store, catalog, get_settings())

    uid = gateway.register(ADMIN_USERNAME, ADMIN_PASSWORD)
    gateway.ledger.set_level_directly(uid, "administration", 2)
    token = gateway.login(ADMIN_USERNAME, ADMIN_PASSWORD).token

    app.router.lifespan_context = _patch_lifespan(store, catalog, gateway)

    # TrustedHostMiddleware only admits localhost names.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, token, uid

    store.close()


@pytest.fixture(scope="module")
def clocked_api_client() -> Generator[tuple[TestClient, AuthGateway, FakeClock], None, None]:
    """Yield (client, gateway, clock) for tests that move time inside the API.

    Users and tokens are created through the gateway directly; the clock is
    shared by the whole module and only ever moves forward.
    """
    store = _make_test_store("clocked")
    catalog = load_catalog()
    clock = FakeClock()
    gateway = AuthGateway.build(store, catalog, get_settings(), clock=clock)

    app.router.lifespan_context = _patch_lifespan(store, catalog, gateway)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, gateway, clock

    store.close()
