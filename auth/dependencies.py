"""
auth/dependencies.py -- FastAPI Depends() helpers: the request gate.

Bearer credential sources, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "auth_token" cookie -- set by the login endpoint for browser clients.

get_token_claims() verifies the access token statelessly through the
TokenService on app.state and stores the claims on request.state.claims.
Failures raise AuthError; the exception handler in api/main.py turns them
into the JSON error envelope:
  - no credential         -> NO_TOKEN      (401)
  - expired               -> TOKEN_EXPIRED (401, client should refresh)
  - anything else invalid -> TOKEN_INVALID (403)

require_admin() applies get_token_claims() and then insists on role "admin".

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthError, AuthErrorCode
from auth.models import ADMIN_ROLE
from auth.tokens import TokenService

ACCESS_COOKIE = "auth_token"
REFRESH_COOKIE = "refresh_token"


def extract_bearer_token(request: Request) -> str | None:
    """Return the raw access token from the header or cookie, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, value = auth_header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(ACCESS_COOKIE) or None


def get_token_claims(request: Request) -> dict:
    """Require a valid access token. Returns (and attaches) its claims.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: dict = Depends(get_token_claims)): ...
    """
    token = extract_bearer_token(request)
    if token is None:
        raise AuthError(AuthErrorCode.NO_TOKEN, "Access denied. No token provided.")
    tokens: TokenService = request.app.state.token_service
    claims = tokens.verify_access_token(token)
    request.state.claims = claims
    return claims


def require_admin(request: Request) -> dict:
    """Require a valid access token whose role is "admin"."""
    claims = get_token_claims(request)
    if claims.get("role") != ADMIN_ROLE:
        raise AuthError(AuthErrorCode.INSUFFICIENT_PERMISSIONS, "Admin access required.")
    return claims


def client_context(request: Request) -> tuple[str | None, str | None]:
    """(ip_address, user_agent) for audit entries."""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("User-Agent")
