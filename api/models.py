"""
API request and response models for the admin auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check shape (presence, length bounds). The password and
username policy lives in auth/passwords.py and is enforced by AuthService,
so the CLI and the API apply identical rules.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Admin, AuditLogEntry

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=64)
    # Not stripped by policy: whitespace may be part of a password.
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    """Optional body for POST /auth/refresh and /auth/logout (non-cookie clients)."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    old_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


class AdminCreate(BaseModel):
    """Request body for POST /api/v1/auth/admins."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AdminPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/admins/{id}."""

    is_active: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AdminResponse(BaseModel):
    """Sanitized admin record -- never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    email: Optional[str] = None
    is_active: bool
    failed_attempt_count: int
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_admin(cls, admin: Admin) -> "AdminResponse":
        return cls(
            id=admin.id,
            username=admin.username,
            role=admin.role,
            email=admin.email,
            is_active=admin.is_active,
            failed_attempt_count=admin.failed_attempt_count,
            locked_until=admin.locked_until,
            last_login_at=admin.last_login_at,
            created_at=admin.created_at,
        )


class LoginResponse(BaseModel):
    """Response body for POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: AdminResponse


class RefreshResponse(BaseModel):
    """Response body for POST /api/v1/auth/refresh.

    refresh_token is present only when rotate-on-use is enabled.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class AuditLogRow(BaseModel):
    """One audit log entry in GET /api/v1/auth/audit-logs."""

    model_config = ConfigDict(frozen=True)

    id: int
    admin_id: Optional[int]
    username: Optional[str]
    action: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    success: bool
    details: Optional[str]
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogRow":
        return cls(
            id=entry.id,
            admin_id=entry.admin_id,
            username=entry.username,
            action=entry.action.value,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            success=entry.success,
            details=entry.details,
            created_at=entry.created_at,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: int
    offset: int
    total: int


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    logs: list[AuditLogRow]
    pagination: Pagination


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
