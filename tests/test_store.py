"""Unit tests for auth/store.py -- the SQLAlchemy Core repositories.

Covers:
- AdminStore insert/lookup, duplicate usernames, active-count
- record_failed_attempt() increments atomically and sets the lock at the threshold
- concurrent record_failed_attempt() calls never lose an increment
- RefreshTokenStore revoke/consume/revoke_all/purge semantics
- AuditLogStore ordering (newest first) and the username join
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Admin, AuditAction, AuditLogEntry, RefreshToken
from auth.passwords import BCRYPT_HASH_LENGTH

FAKE_HASH = "$2b$04$" + "a" * (BCRYPT_HASH_LENGTH - 7)


@pytest.fixture
def admin_id(services) -> int:
    return services.admins.create_admin(Admin(username="alice", password_hash=FAKE_HASH), services.clock.now())


class TestAdminStore:
    def test_create_and_fetch(self, services, admin_id: int) -> None:
        assert services.admins.has_admins()
        by_name = services.admins.get_by_username("alice")
        by_id = services.admins.get_by_id(admin_id)
        assert by_name == by_id
        assert by_name.failed_attempt_count == 0
        assert by_name.locked_until is None
        assert by_name.is_active is True
        assert by_name.created_at == services.clock.now()

    def test_missing_returns_none(self, services) -> None:
        assert not services.admins.has_admins()
        assert services.admins.get_by_username("nobody") is None
        assert services.admins.get_by_id(999) is None

    def test_duplicate_username_raises_integrity_error(self, services, admin_id: int) -> None:
        with pytest.raises(IntegrityError):
            services.admins.create_admin(Admin(username="alice", password_hash=FAKE_HASH), services.clock.now())

    def test_count_active_admins(self, services, admin_id: int) -> None:
        services.admins.create_admin(Admin(username="bob", password_hash=FAKE_HASH), services.clock.now())
        assert services.admins.count_active_admins() == 2
        services.admins.set_active(admin_id, False)
        assert services.admins.count_active_admins() == 1


class TestFailedAttemptCounter:
    def test_increments_without_locking_below_threshold(self, services, admin_id: int) -> None:
        lock_until = services.clock.now() + timedelta(minutes=15)
        for expected in range(1, 5):
            count, locked_until = services.admins.record_failed_attempt(admin_id, 5, lock_until)
            assert count == expected
            assert locked_until is None

    def test_locks_at_threshold(self, services, admin_id: int) -> None:
        lock_until = services.clock.now() + timedelta(minutes=15)
        for _ in range(4):
            services.admins.record_failed_attempt(admin_id, 5, lock_until)
        count, locked_until = services.admins.record_failed_attempt(admin_id, 5, lock_until)
        assert count == 5
        assert locked_until == lock_until

    def test_clear_lockout_resets(self, services, admin_id: int) -> None:
        lock_until = services.clock.now() + timedelta(minutes=15)
        services.admins.record_failed_attempt(admin_id, 1, lock_until)
        assert services.admins.clear_lockout(admin_id, lock_until) is True
        admin = services.admins.get_by_id(admin_id)
        assert admin.failed_attempt_count == 0
        assert admin.locked_until is None

    def test_clear_lockout_leaves_a_newer_lock_alone(self, services, admin_id: int) -> None:
        old_lock = services.clock.now() + timedelta(minutes=15)
        new_lock = old_lock + timedelta(minutes=20)
        services.admins.record_failed_attempt(admin_id, 1, old_lock)
        services.admins.record_failed_attempt(admin_id, 1, new_lock)

        assert services.admins.clear_lockout(admin_id, old_lock) is False
        admin = services.admins.get_by_id(admin_id)
        assert admin.failed_attempt_count == 2
        assert admin.locked_until == new_lock

    def test_concurrent_increments_are_not_lost(self, services, admin_id: int) -> None:
        """N threads each record one failure; the stored count is exactly N."""
        n = 12
        lock_until = services.clock.now() + timedelta(minutes=15)
        barrier = threading.Barrier(n)
        errors: list[BaseException] = []

        def worker() -> None:
            try:
                barrier.wait()
                services.admins.record_failed_attempt(admin_id, 1000, lock_until)
            except BaseException as exc:  # surfaced via the errors list below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert services.admins.get_by_id(admin_id).failed_attempt_count == n


class TestRefreshTokenStore:
    def _add(self, services, admin_id: int, token_hash: str, ttl: timedelta = timedelta(days=7)) -> None:
        now = services.clock.now()
        services.refresh_tokens.add(RefreshToken(admin_id=admin_id, token_hash=token_hash, expires_at=now + ttl), now)

    def test_add_and_lookup(self, services, admin_id: int) -> None:
        self._add(services, admin_id, "h1")
        record = services.refresh_tokens.get_by_hash("h1")
        assert record.admin_id == admin_id
        assert record.revoked is False
        assert services.refresh_tokens.get_by_hash("nope") is None

    def test_revoke_is_idempotent(self, services, admin_id: int) -> None:
        self._add(services, admin_id, "h1")
        assert services.refresh_tokens.revoke_by_hash("h1") is True
        assert services.refresh_tokens.revoke_by_hash("h1") is True
        assert services.refresh_tokens.get_by_hash("h1").revoked is True
        assert services.refresh_tokens.revoke_by_hash("unknown") is False

    def test_revoke_scoped_to_owner(self, services, admin_id: int) -> None:
        self._add(services, admin_id, "h1")
        assert services.refresh_tokens.revoke_by_hash("h1", admin_id + 1) is False
        assert services.refresh_tokens.get_by_hash("h1").revoked is False
        assert services.refresh_tokens.revoke_by_hash("h1", admin_id) is True
        assert services.refresh_tokens.get_by_hash("h1").revoked is True

    def test_consume_succeeds_once(self, services, admin_id: int) -> None:
        self._add(services, admin_id, "h1")
        now = services.clock.now()
        assert services.refresh_tokens.consume("h1", now) is True
        assert services.refresh_tokens.consume("h1", now) is False

    def test_consume_refuses_expired(self, services, admin_id: int) -> None:
        self._add(services, admin_id, "h1", ttl=timedelta(minutes=1))
        assert services.refresh_tokens.consume("h1", services.clock.now() + timedelta(minutes=2)) is False

    def test_revoke_all_counts_only_live_tokens(self, services, admin_id: int) -> None:
        for h in ("h1", "h2", "h3"):
            self._add(services, admin_id, h)
        services.refresh_tokens.revoke_by_hash("h1")
        assert services.refresh_tokens.revoke_all(admin_id) == 2
        assert all(t.revoked for t in services.refresh_tokens.list_for_admin(admin_id))
        assert services.refresh_tokens.revoke_all(admin_id) == 0

    def test_purge_expired_deletes_only_expired(self, services, admin_id: int) -> None:
        self._add(services, admin_id, "short", ttl=timedelta(hours=1))
        self._add(services, admin_id, "long", ttl=timedelta(days=7))
        deleted = services.refresh_tokens.purge_expired(services.clock.now() + timedelta(hours=2))
        assert deleted == 1
        assert services.refresh_tokens.get_by_hash("short") is None
        assert services.refresh_tokens.get_by_hash("long") is not None


class TestAuditLogStore:
    def test_newest_first_with_username(self, services, admin_id: int) -> None:
        services.audit.append(AuditLogEntry(action=AuditAction.login_failed, success=False), services.clock.now())
        services.clock.advance(seconds=1)
        services.audit.append(
            AuditLogEntry(action=AuditAction.login_success, success=True, admin_id=admin_id, ip_address="10.0.0.1"),
            services.clock.now(),
        )

        entries = services.audit.list_entries()
        assert [e.action for e in entries] == [AuditAction.login_success, AuditAction.login_failed]
        assert entries[0].username == "alice"
        assert entries[0].ip_address == "10.0.0.1"
        assert entries[1].admin_id is None
        assert entries[1].username is None
        assert services.audit.count() == 2

    def test_pagination(self, services) -> None:
        for _ in range(5):
            services.audit.append(AuditLogEntry(action=AuditAction.logout, success=True), services.clock.now())
            services.clock.advance(seconds=1)
        page = services.audit.list_entries(limit=2, offset=1)
        all_entries = services.audit.list_entries()
        assert [e.id for e in page] == [e.id for e in all_entries[1:3]]
