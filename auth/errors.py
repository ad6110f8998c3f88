"""
auth/errors.py -- Typed error taxonomy for the auth core.

Every failure the core reports to a caller is an AuthError carrying an
AuthErrorCode. Callers branch on exc.code, never on the message text.
The HTTP status for each code lives here so the API layer needs a single
exception handler.

INVALID_CREDENTIALS is used for both "unknown username" and "wrong password"
so the two are indistinguishable to external callers.
"""

from __future__ import annotations

from enum import Enum


class AuthErrorCode(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_DISABLED = "ACCOUNT_DISABLED"
    NO_TOKEN = "NO_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    USERNAME_TAKEN = "USERNAME_TAKEN"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def status_code(self) -> int:
        return _STATUS[self]


_STATUS: dict[AuthErrorCode, int] = {
    AuthErrorCode.INVALID_CREDENTIALS: 401,
    AuthErrorCode.ACCOUNT_LOCKED: 423,
    AuthErrorCode.ACCOUNT_DISABLED: 403,
    AuthErrorCode.NO_TOKEN: 401,
    AuthErrorCode.TOKEN_EXPIRED: 401,
    AuthErrorCode.TOKEN_INVALID: 403,
    AuthErrorCode.TOKEN_REVOKED: 403,
    AuthErrorCode.VALIDATION_FAILED: 400,
    AuthErrorCode.RATE_LIMIT_EXCEEDED: 429,
    AuthErrorCode.INSUFFICIENT_PERMISSIONS: 403,
    AuthErrorCode.USERNAME_TAKEN: 409,
    AuthErrorCode.NOT_FOUND: 404,
    AuthErrorCode.INTERNAL_ERROR: 500,
}

# Shared by the unknown-user and wrong-password branches.
INVALID_CREDENTIALS_MESSAGE = "Invalid username or password."


class AuthError(Exception):
    """A terminal authentication or authorization failure."""

    def __init__(self, code: AuthErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def status_code(self) -> int:
        return self.code.status_code

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}

    def __repr__(self) -> str:
        return f"AuthError({self.code.value}, {self.message!r})"


def invalid_credentials() -> AuthError:
    return AuthError(AuthErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)
