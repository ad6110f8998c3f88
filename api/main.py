"""
api/main.py -- FastAPI application entry point for the admin auth core.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request

Rate limits are route dependencies from api.limiter, so a request rejected
by TrustedHost never reaches them.

Lifespan builds the database handle, stores, and services exactly once and
hangs them on app.state; route handlers reach them through the request.
It also seeds the bootstrap admin and starts the refresh-token purge task,
and tears everything down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import enforce_api_rate_limit, limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.clock import Clock, SystemClock
from auth.errors import AuthError, AuthErrorCode
from auth.service import AuthService
from auth.store import AdminStore, AuditLogStore, AuthDatabase, RefreshTokenStore
from auth.tokens import TokenService
from core.config import Settings, get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("adminauth.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_app_state(app: FastAPI, settings: Settings, db: AuthDatabase, clock: Clock) -> None:
    """Construct stores and services over db and attach them to app.state.

    Shared by the real lifespan and the test fixtures so both exercise the
    same object graph.
    """
    admins = AdminStore(db)
    token_service = TokenService(RefreshTokenStore(db), admins, settings, clock)
    app.state.settings = settings
    app.state.db = db
    app.state.token_service = token_service
    app.state.auth_service = AuthService(admins, AuditLogStore(db), token_service, settings, clock)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired refresh-token rows every interval_seconds.

    Routine cleanup only: expired rows are already rejected on lookup. The
    purge itself is a blocking DB call, so it runs in a worker thread.
    CancelledError from task.cancel() during shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.token_service.purge_expired)
        except Exception:
            logger.exception("Refresh token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Database and stores.
      2. Services (TokenService before AuthService, which depends on it).
      3. Bootstrap admin -- needs AuthService.
      4. Purge task last -- references app.state.token_service.
    """
    settings = get_settings()
    logger.info("Admin auth API starting up")
    db = AuthDatabase(settings.database_url)
    wire_app_state(app, settings, db, SystemClock())
    app.state.auth_service.ensure_bootstrap_admin()
    logger.info("Auth initialized")
    purge_task = asyncio.create_task(_purge_loop(app, settings.token_purge_interval_seconds))

    yield

    purge_task.cancel()
    db.close()
    logger.info("Admin auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Admin Auth API",
    description="Credential and session management for the administrative surface.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each new middleware around the ones already added, so the
# last one registered sees the request first. Registered innermost first:
# log_requests, then CORS, then TrustedHost.
# ---------------------------------------------------------------------------

_settings = get_settings()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly: {"error": {"code": ..., "message": ...}}.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the typed auth error taxonomy onto HTTP status + stable code."""
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code.value, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


def _retry_after(exc: RateLimitExceeded) -> int:
    item = getattr(getattr(exc, "limit", None), "limit", None)
    return int(item.get_expiry()) if item is not None else 60


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 RATE_LIMIT_EXCEEDED with Retry-After (window length in seconds)."""
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code=AuthErrorCode.RATE_LIMIT_EXCEEDED.value,
                message="Too many requests. Please try again later.",
                detail=str(exc.detail),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(_retry_after(exc))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 VALIDATION_FAILED when a request body or query fails its schema."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code=AuthErrorCode.VALIDATION_FAILED.value,
                message="Validation failed.",
                detail="; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework-raised HTTP errors (404, 405, ...) in the same envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"HTTP_{exc.status_code}", message=str(exc.detail))).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors, store failures included.

    The raw exception is logged server-side only; the client receives a
    generic message with no internal detail.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code=AuthErrorCode.INTERNAL_ERROR.value, message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No auth. Subject only to the application-wide rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], dependencies=[Depends(enforce_api_rate_limit)])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
