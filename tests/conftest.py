"""
tests/conftest.py -- Shared test fixtures for the admin auth core.

This module provides:
  - settings: Settings tuned for tests (fast bcrypt, fixed secret)
  - clock: a FrozenClock so lockout/token expiry and the failure delay are
    deterministic and instant
  - db / services: a real AuthDatabase on a temp-file SQLite DB plus the
    stores and services built over it
  - seeded_admin: the bootstrap admin "admin" / "admin123"
  - api_client: TestClient over the real FastAPI app with a patched lifespan
    that wires the test services into app.state

Each test gets its own SQLite file under tmp_path. File-backed DBs (rather
than :memory:) let TestClient's worker threads and the concurrency tests
share one database.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_app_state
from auth.models import Admin
from auth.store import AuthDatabase
from core.config import Settings
from helpers import FrozenClock, Services, build_services, make_settings

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def db(tmp_path) -> Generator[AuthDatabase, None, None]:
    database = AuthDatabase(f"sqlite:///{tmp_path / 'auth.db'}")
    yield database
    database.close()


@pytest.fixture
def services(db: AuthDatabase, settings: Settings, clock: FrozenClock) -> Services:
    return build_services(db, settings, clock)


@pytest.fixture
def seeded_admin(services: Services) -> Admin:
    """The bootstrap admin: username "admin", password "admin123"."""
    admin = services.auth.ensure_bootstrap_admin()
    assert admin is not None
    return admin


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(services: Services):
    """Return an async context manager that replaces the real lifespan.

    Wires the test services into app.state so TestClient routes see the
    isolated test DB and the frozen clock. No purge task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_app_state(app, services.settings, services.db, services.clock)
        yield

    return test_lifespan


@pytest.fixture
def api_client(services: Services, seeded_admin: Admin) -> Generator[tuple[TestClient, Services], None, None]:
    """Yield (client, services) with the bootstrap admin already seeded.

    The rate limiter is shared process-wide, so it is reset around each test.
    """
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(services)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, services
    limiter.reset()
