"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AdminStore, RefreshTokenStore and
AuditLogStore are the repositories; _row_to_* functions are the mappers.
Service code never touches SQL directly.

All three repositories share one AuthDatabase (engine + write lock), which
is constructed once at process start and injected -- there is no module-level
database handle.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The failed-attempt counter is incremented with a single
  UPDATE ... SET failed_attempt_count = failed_attempt_count + 1 statement
  and read back inside the same transaction. Together with the in-process
  write lock, two concurrent wrong-password attempts can never both read
  k and write k+1.

  The audit log repository exposes append and read only. There is no update
  or delete path for audit rows.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision) so lexical comparison in SQL matches chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Admin, AuditAction, AuditLogEntry, RefreshToken

logger = logging.getLogger("adminauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_admins = Table(
    "admins",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(64), nullable=False, unique=True),  # normalized lowercase
    Column("password_hash", String(60), nullable=False),  # bcrypt output is always 60 chars
    Column("role", String(30), nullable=False, server_default="admin"),
    Column("email", String(255)),
    Column("failed_attempt_count", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("admin_id", Integer, ForeignKey("admins.id"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_audit_log = Table(
    "admin_audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("admin_id", Integer, ForeignKey("admins.id")),  # NULL when actor unresolved
    Column("action", String(40), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("success", Boolean, nullable=False),
    Column("details", Text),
    Column("created_at", String(32), nullable=False),
)

Index("idx_refresh_tokens_admin", _refresh_tokens.c.admin_id)
Index("idx_audit_log_admin", _audit_log.c.admin_id)
Index("idx_audit_log_created", _audit_log.c.created_at)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Database handle
# ---------------------------------------------------------------------------


class AuthDatabase:
    """Engine plus the process-wide write lock shared by the repositories.

    Usage:
        db = AuthDatabase("sqlite:///admin_auth.db")
        admins = AdminStore(db)
        tokens = RefreshTokenStore(db)
        audit = AuditLogStore(db)
        ...
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        # Serializes writers inside this process. SQLite allows one writer at
        # a time anyway; taking the lock first avoids SQLITE_BUSY retries.
        self.write_lock = threading.Lock()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class AdminStore:
    """Repository for Admin rows. Only AuthService should call the mutators."""

    def __init__(self, db: AuthDatabase) -> None:
        self._db = db

    def has_admins(self) -> bool:
        with self._db.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_admins)).scalar()
        return (result or 0) > 0

    def create_admin(self, admin: Admin, now: datetime) -> int:
        """Insert a new admin and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(
                _admins.insert().values(
                    username=admin.username,
                    password_hash=admin.password_hash,
                    role=admin.role,
                    email=admin.email,
                    failed_attempt_count=0,
                    is_active=admin.is_active,
                    created_at=_to_iso(now),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> Admin | None:
        """Exact match on the stored (already normalized) username."""
        with self._db.engine.connect() as conn:
            row = conn.execute(_admins.select().where(_admins.c.username == username)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def get_by_id(self, admin_id: int) -> Admin | None:
        with self._db.engine.connect() as conn:
            row = conn.execute(_admins.select().where(_admins.c.id == admin_id)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def list_admins(self) -> list[Admin]:
        with self._db.engine.connect() as conn:
            rows = conn.execute(_admins.select().order_by(_admins.c.username)).fetchall()
        return [_row_to_admin(r) for r in rows]

    def count_active_admins(self) -> int:
        with self._db.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_admins).where(_admins.c.is_active.is_(True))
            ).scalar()
        return result or 0

    def record_failed_attempt(self, admin_id: int, threshold: int, lock_until: datetime) -> tuple[int, datetime | None]:
        """Atomically increment the failed-attempt counter.

        In the same statement, set locked_until to lock_until when the new
        count reaches threshold. SQL evaluates every SET expression against
        the pre-update row, so the CASE sees the same count + 1 as the SET.

        Returns (new_count, locked_until) as read back inside the transaction.
        """
        new_count = _admins.c.failed_attempt_count + 1
        with self._db.write_lock, self._db.engine.begin() as conn:
            conn.execute(
                _admins.update()
                .where(_admins.c.id == admin_id)
                .values(
                    failed_attempt_count=new_count,
                    locked_until=case((new_count >= threshold, _to_iso(lock_until)), else_=_admins.c.locked_until),
                )
            )
            row = conn.execute(
                select(_admins.c.failed_attempt_count, _admins.c.locked_until).where(_admins.c.id == admin_id)
            ).fetchone()
        if row is None:
            return 0, None
        return row.failed_attempt_count, _from_iso(row.locked_until)

    def clear_lockout(self, admin_id: int, observed_locked_until: datetime) -> bool:
        """Reset the counter and lock after a lock has expired.

        Only clears the lock the caller actually saw expire: if another
        request has set a fresh lock since, nothing is written and False is
        returned so the caller can re-read the row.
        """
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(
                _admins.update()
                .where(_admins.c.id == admin_id, _admins.c.locked_until == _to_iso(observed_locked_until))
                .values(failed_attempt_count=0, locked_until=None)
            )
        return result.rowcount == 1

    def record_successful_login(self, admin_id: int, now: datetime) -> None:
        with self._db.write_lock, self._db.engine.begin() as conn:
            conn.execute(
                _admins.update()
                .where(_admins.c.id == admin_id)
                .values(failed_attempt_count=0, locked_until=None, last_login_at=_to_iso(now))
            )

    def update_password_hash(self, admin_id: int, password_hash: str) -> bool:
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(
                _admins.update().where(_admins.c.id == admin_id).values(password_hash=password_hash)
            )
        return result.rowcount > 0

    def set_active(self, admin_id: int, active: bool) -> bool:
        """Soft (de)activation. Returns True if a row was updated."""
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(_admins.update().where(_admins.c.id == admin_id).values(is_active=active))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Token store
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for RefreshToken rows. Only TokenService should call it."""

    def __init__(self, db: AuthDatabase) -> None:
        self._db = db

    def add(self, token: RefreshToken, now: datetime) -> int:
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    admin_id=token.admin_id,
                    token_hash=token.token_hash,
                    expires_at=_to_iso(token.expires_at),
                    revoked=False,
                    created_at=_to_iso(now),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_hash(self, token_hash: str) -> RefreshToken | None:
        """Look up a token record by hash, whatever its state. O(1) via UNIQUE index."""
        with self._db.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_for_admin(self, admin_id: int) -> list[RefreshToken]:
        with self._db.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.admin_id == admin_id)
                .order_by(_refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def revoke_by_hash(self, token_hash: str, admin_id: int | None = None) -> bool:
        """Mark one token revoked. Idempotent: True whenever the token exists.

        With admin_id, only a token owned by that admin is touched.
        """
        stmt = _refresh_tokens.update().where(_refresh_tokens.c.token_hash == token_hash)
        if admin_id is not None:
            stmt = stmt.where(_refresh_tokens.c.admin_id == admin_id)
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(stmt.values(revoked=True))
        return result.rowcount > 0

    def consume(self, token_hash: str, now: datetime) -> bool:
        """Revoke a token only if it is still live.

        Returns True if this call performed the revocation. Two concurrent
        callers presenting the same token cannot both get True.
        """
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.token_hash == token_hash)
                    & (_refresh_tokens.c.revoked.is_(False))
                    & (_refresh_tokens.c.expires_at > _to_iso(now))
                )
                .values(revoked=True)
            )
        return result.rowcount == 1

    def revoke_all(self, admin_id: int) -> int:
        """Revoke every live token for admin_id. Returns how many were newly revoked."""
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.admin_id == admin_id) & (_refresh_tokens.c.revoked.is_(False)))
                .values(revoked=True)
            )
        return result.rowcount

    def purge_expired(self, now: datetime) -> int:
        """Delete rows whose expires_at has passed. Returns rows deleted."""
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _to_iso(now)))
        return result.rowcount


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class AuditLogStore:
    """Append-only repository for AuditLogEntry rows."""

    def __init__(self, db: AuthDatabase) -> None:
        self._db = db

    def append(self, entry: AuditLogEntry, now: datetime) -> int:
        with self._db.write_lock, self._db.engine.begin() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    admin_id=entry.admin_id,
                    action=entry.action.value,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    success=entry.success,
                    details=entry.details,
                    created_at=_to_iso(now),
                )
            )
            return result.inserted_primary_key[0]

    def list_entries(self, limit: int = 100, offset: int = 0) -> list[AuditLogEntry]:
        """Newest first, with the actor's username joined in (None if unresolved)."""
        query = (
            select(_audit_log, _admins.c.username)
            .select_from(_audit_log.outerjoin(_admins, _audit_log.c.admin_id == _admins.c.id))
            .order_by(_audit_log.c.created_at.desc(), _audit_log.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with self._db.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_entry(r) for r in rows]

    def count(self) -> int:
        with self._db.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_audit_log)).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_admin(row) -> Admin:
    return Admin(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        role=row.role,
        email=row.email,
        failed_attempt_count=row.failed_attempt_count,
        locked_until=_from_iso(row.locked_until),
        is_active=bool(row.is_active),
        last_login_at=_from_iso(row.last_login_at),
        created_at=_from_iso(row.created_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        admin_id=row.admin_id,
        token_hash=row.token_hash,
        expires_at=_from_iso(row.expires_at),
        revoked=bool(row.revoked),
        created_at=_from_iso(row.created_at),
    )


def _row_to_audit_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        admin_id=row.admin_id,
        action=AuditAction(row.action),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        success=bool(row.success),
        details=row.details,
        created_at=_from_iso(row.created_at),
        username=row.username,
    )
