"""
api/limiter.py -- Shared slowapi rate limiter instance and rate-limit guards.

Two independent network-level defenses live here:
  - application limit (api_rate_limit, default 100/minute per client address)
    counted across every API route under one shared "api" scope;
  - login limit (login_rate_limit, default 5 per 15 minutes per client
    address) on POST /auth/login only.
Both sit in front of, and are independent from, the per-account lockout
in AuthService.

The limits are enforced by the guard functions below, attached to each
route with dependencies=[Depends(...)]. Route-level dependencies run before
the parameter dependencies, so a request is counted before its token is
checked and rejected requests still use up budget. SlowAPIMiddleware is not
used: it looks routes up by endpoint, and routes mounted with
include_router are not always found that way, which silently exempts them.

slowapi checks a request only once, so a route takes exactly one guard:
enforce_login_rate_limit for login (both limits) and
enforce_api_rate_limit for everything else.

Both limits are callables so they are read from Settings on each request.
The moving-window strategy gives a true sliding window rather than fixed
buckets that reset on the minute.

A single shared instance ensures all routes share the same in-memory
counter store. Tests call limiter.reset() between cases.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def api_rate_limit() -> str:
    return get_settings().api_rate_limit


def login_rate_limit() -> str:
    return get_settings().login_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    strategy="moving-window",
    storage_uri="memory://",
)


@limiter.shared_limit(api_rate_limit, scope="api")
def enforce_api_rate_limit(request: Request) -> None:
    """Count the request against the application limit; 429 when exhausted."""


@limiter.shared_limit(api_rate_limit, scope="api")
@limiter.limit(login_rate_limit)
def enforce_login_rate_limit(request: Request) -> None:
    """Count a login attempt against both the login and application limits."""
