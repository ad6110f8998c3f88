"""
api/routes/v1/auth.py -- Authentication and admin management REST endpoints.

Routes:
  POST  /api/v1/auth/login             -- password login; sets auth_token + refresh_token cookies
  POST  /api/v1/auth/refresh           -- refresh token (cookie or body) -> new access token
  POST  /api/v1/auth/logout            -- revoke the presented refresh token; clear cookies
  POST  /api/v1/auth/logout-all        -- revoke every refresh token of the caller; clear cookies
  GET   /api/v1/auth/me                -- current admin (requires access token)
  POST  /api/v1/auth/change-password   -- requires old password; revokes all refresh tokens
  POST  /api/v1/auth/admins            -- create admin (admin only)
  GET   /api/v1/auth/admins            -- list admins (admin only)
  PATCH /api/v1/auth/admins/{id}       -- activate / deactivate (admin only)
  GET   /api/v1/auth/audit-logs        -- paginated audit trail (admin only)

Security:
  Every route counts against the per-address application limit
      (api_rate_limit); POST /login also against login_rate_limit, on top
      of the per-account lockout enforced by AuthService.
  AuthService.authenticate() owns timing equalization -- never inline a
      lookup + bcrypt check in a route.
  Cache-Control: no-store on every response that carries tokens.
  Cookies are httpOnly, SameSite=strict, and Secure when SECURE_COOKIES=true.

Handlers are plain `def` so Starlette runs them in its thread pool: the
failure delay and bcrypt work block a worker thread, never the event loop.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import enforce_api_rate_limit, enforce_login_rate_limit
from api.models import (
    AdminCreate,
    AdminPatch,
    AdminResponse,
    AuditLogResponse,
    AuditLogRow,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    Pagination,
    RefreshRequest,
    RefreshResponse,
)
from auth.dependencies import ACCESS_COOKIE, REFRESH_COOKIE, client_context, get_token_claims, require_admin
from auth.errors import AuthError, AuthErrorCode
from auth.service import AUDIT_PAGE_MAX, AuthService
from core.config import Settings

# Auth policy:
# - POST  /auth/login, /auth/refresh:             public (refresh needs a refresh token)
# - POST  /auth/logout, /auth/logout-all:         requires access token (get_token_claims)
# - GET   /auth/me, POST /auth/change-password:   requires access token (get_token_claims)
# - POST/GET /auth/admins, PATCH /auth/admins/{id}, GET /auth/audit-logs: requires admin (require_admin)
#
# Every route counts against the application rate limit; login also against
# the login limit.
router = APIRouter()

_API_LIMIT = [Depends(enforce_api_rate_limit)]


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _set_cookie(response: JSONResponse, settings: Settings, name: str, value: str, max_age: int) -> None:
    """httponly: JS cannot read it. samesite=strict: never sent cross-site.
    secure: HTTPS only when SECURE_COOKIES=true (production). max_age matches
    the token lifetime so cookie and JWT expire together."""
    response.set_cookie(
        name,
        value=value,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=max_age,
    )


def _clear_session_cookies(response: JSONResponse, settings: Settings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, httponly=True, samesite="strict", secure=settings.secure_cookies)


def _no_store(response: JSONResponse) -> JSONResponse:
    response.headers["Cache-Control"] = "no-store"
    return response


def _services(request: Request) -> tuple[AuthService, Settings]:
    return request.app.state.auth_service, request.app.state.settings


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse, dependencies=[Depends(enforce_login_rate_limit)])
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return and set both tokens.

    Unknown username and wrong password produce the same INVALID_CREDENTIALS
    code and message.
    """
    auth, settings = _services(request)
    ip_address, user_agent = client_context(request)
    issued = auth.login(body.username, body.password, ip_address, user_agent)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=issued.access_token,
            refresh_token=issued.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=issued.expires_in,
            user=AdminResponse.from_admin(issued.admin),
        ).model_dump(mode="json"),
    )
    _set_cookie(resp, settings, ACCESS_COOKIE, issued.access_token, settings.access_token_expire_seconds)
    _set_cookie(resp, settings, REFRESH_COOKIE, issued.refresh_token, settings.refresh_token_expire_seconds)
    return _no_store(resp)


@router.post("/auth/refresh", response_model=RefreshResponse, dependencies=_API_LIMIT)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token (cookie first, then body) for a new access token."""
    auth, settings = _services(request)
    refresh_token = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    if not refresh_token:
        raise AuthError(AuthErrorCode.NO_TOKEN, "Refresh token required.")

    ip_address, user_agent = client_context(request)
    issued = auth.refresh(refresh_token, ip_address, user_agent)

    resp = JSONResponse(
        content=RefreshResponse(
            access_token=issued.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=issued.expires_in,
            refresh_token=issued.refresh_token,
        ).model_dump(mode="json"),
    )
    _set_cookie(resp, settings, ACCESS_COOKIE, issued.access_token, settings.access_token_expire_seconds)
    if issued.refresh_token:
        _set_cookie(resp, settings, REFRESH_COOKIE, issued.refresh_token, settings.refresh_token_expire_seconds)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse, dependencies=_API_LIMIT)
def logout(
    request: Request,
    body: Optional[RefreshRequest] = None,
    claims: dict = Depends(get_token_claims),
) -> JSONResponse:
    """Revoke the presented refresh token (if any) and clear both cookies."""
    auth, settings = _services(request)
    refresh_token = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    ip_address, user_agent = client_context(request)
    auth.logout(claims["id"], refresh_token, ip_address, user_agent)

    resp = JSONResponse(content={"message": "Logged out successfully."})
    _clear_session_cookies(resp, settings)
    return resp


@router.post("/auth/logout-all", response_model=MessageResponse, dependencies=_API_LIMIT)
def logout_all(request: Request, claims: dict = Depends(get_token_claims)) -> JSONResponse:
    """Revoke every refresh token of the caller (logout on all devices)."""
    auth, settings = _services(request)
    ip_address, user_agent = client_context(request)
    auth.logout_all(claims["id"], ip_address, user_agent)

    resp = JSONResponse(content={"message": "Logged out from all devices."})
    _clear_session_cookies(resp, settings)
    return resp


@router.get("/auth/me", response_model=AdminResponse, dependencies=_API_LIMIT)
def me(request: Request, claims: dict = Depends(get_token_claims)) -> AdminResponse:
    """Return the sanitized admin record behind the access token."""
    auth, _ = _services(request)
    return AdminResponse.from_admin(auth.get_admin(claims["id"]))


@router.post("/auth/change-password", response_model=MessageResponse, dependencies=_API_LIMIT)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: dict = Depends(get_token_claims),
) -> JSONResponse:
    """Change the caller's password. All refresh tokens are revoked and the
    session cookies cleared, forcing a fresh login everywhere."""
    auth, settings = _services(request)
    ip_address, user_agent = client_context(request)
    auth.change_password(claims["id"], body.old_password, body.new_password, ip_address, user_agent)

    resp = JSONResponse(content={"message": "Password changed successfully. Please log in again."})
    _clear_session_cookies(resp, settings)
    return resp


# ---------------------------------------------------------------------------
# Admin management (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/admins", response_model=AdminResponse, status_code=201, dependencies=_API_LIMIT)
def create_admin(
    request: Request,
    body: AdminCreate,
    claims: dict = Depends(require_admin),
) -> AdminResponse:
    """Create a new admin account. 409 USERNAME_TAKEN on duplicates."""
    auth, _ = _services(request)
    ip_address, user_agent = client_context(request)
    created = auth.create_admin(
        body.username,
        body.password,
        email=body.email,
        actor_id=claims["id"],
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return AdminResponse.from_admin(created)


@router.get("/auth/admins", response_model=list[AdminResponse], dependencies=_API_LIMIT)
def list_admins(request: Request, claims: dict = Depends(require_admin)) -> list[AdminResponse]:
    auth, _ = _services(request)
    return [AdminResponse.from_admin(a) for a in auth.list_admins()]


@router.patch("/auth/admins/{admin_id}", response_model=AdminResponse, dependencies=_API_LIMIT)
def update_admin(
    request: Request,
    admin_id: int,
    body: AdminPatch,
    claims: dict = Depends(require_admin),
) -> AdminResponse:
    """Activate or deactivate an admin. Self-deactivation and deactivating
    the last active admin are refused."""
    auth, _ = _services(request)
    ip_address, user_agent = client_context(request)
    updated = auth.set_active(admin_id, body.is_active, claims["id"], ip_address, user_agent)
    return AdminResponse.from_admin(updated)


@router.get("/auth/audit-logs", response_model=AuditLogResponse, dependencies=_API_LIMIT)
def audit_logs(
    request: Request,
    limit: int = Query(default=100, ge=1, le=AUDIT_PAGE_MAX),
    offset: int = Query(default=0, ge=0),
    claims: dict = Depends(require_admin),
) -> AuditLogResponse:
    """Audit trail, newest first."""
    auth, _ = _services(request)
    entries = auth.get_audit_log(limit=limit, offset=offset)
    return AuditLogResponse(
        logs=[AuditLogRow.from_entry(e) for e in entries],
        pagination=Pagination(limit=limit, offset=offset, total=auth.count_audit_entries()),
    )
