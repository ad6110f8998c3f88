"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores and services do the work.

Timestamps are timezone-aware UTC datetimes. The store layer converts them
to fixed-width ISO 8601 strings for persistence.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

ADMIN_ROLE = "admin"


class AuditAction(str, Enum):
    """Kinds of security event written to the audit log."""

    login_success = "login_success"
    login_failed = "login_failed"
    logout = "logout"
    logout_all_devices = "logout_all_devices"
    token_refreshed = "token_refreshed"
    token_refresh_failed = "token_refresh_failed"
    password_changed = "password_changed"
    password_change_failed = "password_change_failed"
    admin_created = "admin_created"
    admin_deactivated = "admin_deactivated"
    admin_activated = "admin_activated"


@dataclass
class Admin:
    """One privileged operator.

    username is stored normalized (stripped, lowercase). password_hash is a
    bcrypt hash and is None only on sanitized copies handed out of the core.

    role is an open string for future extension; only "admin" exists today.
    """

    username: str
    password_hash: str | None = None
    role: str = ADMIN_ROLE
    id: int | None = None
    email: str | None = None
    failed_attempt_count: int = 0
    locked_until: datetime | None = None
    is_active: bool = True
    last_login_at: datetime | None = None
    created_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def sanitized(self) -> Admin:
        """Return a copy with the password hash stripped."""
        return dataclasses.replace(self, password_hash=None)


@dataclass
class RefreshToken:
    """A persisted refresh token record.

    The raw token is never stored -- token_hash is HMAC-SHA256(SECRET_KEY, raw).
    A record is usable iff revoked is False, expires_at is in the future, and
    the owning admin is active (checked by TokenService, not here).
    """

    admin_id: int
    token_hash: str
    expires_at: datetime
    id: int | None = None
    revoked: bool = False
    created_at: datetime | None = None


@dataclass
class IssuedTokens:
    """Result of a login or refresh. refresh_token is None when a refresh
    call re-verified the existing refresh token instead of replacing it."""

    access_token: str
    expires_in: int
    admin: Admin
    refresh_token: str | None = None


@dataclass
class AuditLogEntry:
    """One immutable security event.

    admin_id is None when the actor could not be resolved (unknown username).
    username is populated on reads only (joined from admins).
    """

    action: AuditAction
    success: bool
    admin_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    username: str | None = None
