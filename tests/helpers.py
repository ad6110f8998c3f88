"""
tests/helpers.py -- Test doubles and builders shared by conftest.py and the test modules.

Kept out of conftest.py so test modules can import them by name without
importing conftest a second time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.service import AuthService
from auth.store import AdminStore, AuditLogStore, AuthDatabase, RefreshTokenStore
from auth.tokens import TokenService
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256-signing"


class FrozenClock:
    """A manually advanced clock. sleep() advances simulated time instantly.

    Every requested sleep is recorded in .sleeps so tests can assert the
    failure delay was applied without waiting for it.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now += timedelta(seconds=seconds)

    def advance(self, **kwargs: float) -> None:
        """Move time forward, e.g. clock.advance(minutes=15)."""
        self._now += timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    """Settings for tests: low bcrypt cost, fixed secret, no jitter."""
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "failure_delay_ms": 150,
        "failure_delay_jitter_ms": 0,
    }
    values.update(overrides)
    return Settings(**values)


@dataclass
class Services:
    settings: Settings
    clock: FrozenClock
    db: AuthDatabase
    admins: AdminStore
    refresh_tokens: RefreshTokenStore
    audit: AuditLogStore
    tokens: TokenService
    auth: AuthService


def build_services(db: AuthDatabase, settings: Settings, clock: FrozenClock) -> Services:
    admins = AdminStore(db)
    refresh_tokens = RefreshTokenStore(db)
    audit = AuditLogStore(db)
    tokens = TokenService(refresh_tokens, admins, settings, clock)
    auth = AuthService(admins, audit, tokens, settings, clock)
    return Services(settings, clock, db, admins, refresh_tokens, audit, tokens, auth)


def login(client: TestClient, username: str = "admin", password: str = "admin123"):
    return client.post("/api/v1/auth/login", json={"username": username, "password": password})


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
