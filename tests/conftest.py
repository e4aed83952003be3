"""
tests/conftest.py -- Shared test fixtures for CarFleet tests.

This module provides:
  - store / service: a fresh in-memory FleetStore (and FleetService over it)
    per test, for unit tests
  - _make_test_store(): an isolated named shared-memory store for the app
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: TestClient plus a bearer token for a pre-created user

Design: named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient because route handlers run in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
StaticPool is passed explicitly so every thread reuses one connection
instead of relying on SQLAlchemy's implicit pool choice for memory URLs.

DEBUG must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY instead of raising ValueError. Rate limiting is
switched off so repeated signins in one module never hit 429.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any core/auth/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from api.main import app
from auth.tokens import create_access_token
from fleet.models import UserDraft
from fleet.service import FleetService
from fleet.store import FleetStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> FleetStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return FleetStore(
        f"sqlite:///file:test_fleet_{db_suffix}?mode=memory&cache=shared&uri=true",
        poolclass=StaticPool,
    )


def _patch_lifespan(store: FleetStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.service = FleetService(store)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[FleetStore, None, None]:
    s = FleetStore("sqlite:///:memory:", poolclass=StaticPool)
    yield s
    s.close()


@pytest.fixture
def service(store: FleetStore) -> FleetService:
    return FleetService(store)


# ---------------------------------------------------------------------------
# Module-scoped fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers and middleware but use an isolated in-memory
    store. The user "testuser" / "testpass123" exists before the client
    starts.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    created = FleetService(store).create_user(
        UserDraft(login="testuser", email="testuser@example.com", password="testpass123", first_name="Test")
    )
    uid = created.user.id
    token = create_access_token("testuser")

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    store.close()
