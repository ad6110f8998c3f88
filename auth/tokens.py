"""
auth/tokens.py -- Access/refresh token issuance, verification and revocation.

Security design decisions:
  JWT: python-jose with HS256. Every token is signed with SECRET_KEY and
       carries iss/aud claims scoping it to this service, plus a random jti
       so two tokens minted in the same second still differ.

       Expiry is checked against the injected Clock rather than inside
       jwt.decode(), so tests can simulate the passage of time. jose's own
       exp check is disabled for that reason only -- everything else
       (signature, issuer, audience) is verified by jose.

  Access tokens are stateless: verify_access_token() never touches the
       database. Refresh tokens are stateful: the raw value is returned once
       and only HMAC-SHA256(SECRET_KEY, raw) is persisted. A deterministic
       HMAC lets the store do an O(1) lookup by hash; refresh tokens are
       long random JWTs, so bcrypt's slowness buys nothing here.

  Refresh does not rotate the refresh token by default. With
       refresh_rotate_on_use enabled, rotate_refresh_token() consumes the
       presented token and returns a replacement pair.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

from jose import JWTError, jwt

from auth.clock import Clock
from auth.errors import AuthError, AuthErrorCode
from auth.models import Admin, RefreshToken
from auth.store import AdminStore, RefreshTokenStore
from core.config import Settings

logger = logging.getLogger("adminauth.auth")

_ALGORITHM = "HS256"
_REFRESH_TYPE = "refresh"


class _Expired(Exception):
    """Internal signal: signature valid, exp in the past."""


class TokenService:
    """Owns the RefreshToken lifecycle and all JWT encode/decode.

    Usage:
        tokens = TokenService(RefreshTokenStore(db), AdminStore(db), settings, SystemClock())
        access = tokens.issue_access_token(admin)
        refresh = tokens.issue_refresh_token(admin)
        claims = tokens.verify_access_token(access)
    """

    def __init__(self, tokens: RefreshTokenStore, admins: AdminStore, settings: Settings, clock: Clock) -> None:
        self._tokens = tokens
        self._admins = admins
        self._settings = settings
        self._clock = clock

    @property
    def access_token_ttl(self) -> int:
        return self._settings.access_token_expire_seconds

    @property
    def refresh_token_ttl(self) -> int:
        return self._settings.refresh_token_expire_seconds

    # ------------------------------------------------------------------
    # Encode / decode
    # ------------------------------------------------------------------

    def _encode(self, claims: dict, ttl_seconds: int) -> str:
        now = self._clock.now()
        payload = {
            **claims,
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._settings.secret_key, algorithm=_ALGORITHM)

    def _decode(self, token: str) -> dict:
        """Verify signature, issuer and audience; then exp against the clock.

        Raises AuthError(TOKEN_INVALID) or _Expired.
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key,
                algorithms=[_ALGORITHM],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise AuthError(AuthErrorCode.TOKEN_INVALID, "Invalid token.") from exc
        exp = payload.get("exp")
        if not isinstance(exp, int):
            raise AuthError(AuthErrorCode.TOKEN_INVALID, "Invalid token.")
        if exp <= self._clock.now().timestamp():
            raise _Expired()
        return payload

    def hash_token(self, raw_token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
        return hmac.new(
            self._settings.secret_key.encode(),
            raw_token.encode(),
            hashlib.sha256,
        ).hexdigest()

    # ------------------------------------------------------------------
    # Access tokens (stateless)
    # ------------------------------------------------------------------

    def issue_access_token(self, admin: Admin) -> str:
        claims = {"sub": admin.username, "id": admin.id, "username": admin.username, "role": admin.role}
        return self._encode(claims, self.access_token_ttl)

    def verify_access_token(self, token: str) -> dict:
        """Return the claims of a valid access token.

        Raises AuthError with TOKEN_EXPIRED (client should try /refresh) or
        TOKEN_INVALID (bad signature, wrong scope, refresh token presented,
        missing claims).
        """
        try:
            payload = self._decode(token)
        except _Expired:
            raise AuthError(AuthErrorCode.TOKEN_EXPIRED, "Token expired. Please refresh or log in again.") from None
        if payload.get("type") == _REFRESH_TYPE:
            raise AuthError(AuthErrorCode.TOKEN_INVALID, "Invalid token.")
        if not isinstance(payload.get("id"), int) or "role" not in payload or "username" not in payload:
            raise AuthError(AuthErrorCode.TOKEN_INVALID, "Invalid token.")
        return payload

    # ------------------------------------------------------------------
    # Refresh tokens (stateful)
    # ------------------------------------------------------------------

    def issue_refresh_token(self, admin: Admin) -> str:
        """Mint a refresh token and persist its hash. The raw value is returned once."""
        raw = self._encode({"id": admin.id, "type": _REFRESH_TYPE}, self.refresh_token_ttl)
        now = self._clock.now()
        self._tokens.add(
            RefreshToken(
                admin_id=admin.id,
                token_hash=self.hash_token(raw),
                expires_at=now + timedelta(seconds=self.refresh_token_ttl),
            ),
            now,
        )
        return raw

    def _check_refresh(self, refresh_token: str) -> tuple[str, Admin]:
        """Run every refresh-token check. Returns (token_hash, admin)."""
        try:
            payload = self._decode(refresh_token)
        except _Expired:
            raise AuthError(AuthErrorCode.TOKEN_REVOKED, "Refresh token expired or revoked.") from None
        if payload.get("type") != _REFRESH_TYPE:
            raise AuthError(AuthErrorCode.TOKEN_INVALID, "Invalid refresh token.")

        token_hash = self.hash_token(refresh_token)
        record = self._tokens.get_by_hash(token_hash)
        if record is None or record.revoked or record.expires_at <= self._clock.now():
            raise AuthError(AuthErrorCode.TOKEN_REVOKED, "Refresh token expired or revoked.")
        if payload.get("id") != record.admin_id:
            raise AuthError(AuthErrorCode.TOKEN_INVALID, "Invalid refresh token.")

        admin = self._admins.get_by_id(record.admin_id)
        if admin is None or not admin.is_active:
            raise AuthError(AuthErrorCode.ACCOUNT_DISABLED, "Account not found or disabled.")
        return token_hash, admin

    def rotate_access_token(self, refresh_token: str) -> tuple[str, Admin]:
        """Exchange a valid refresh token for a fresh access token.

        The refresh token itself stays valid. Returns (access_token, admin)
        with the admin sanitized.
        """
        _, admin = self._check_refresh(refresh_token)
        return self.issue_access_token(admin), admin.sanitized()

    def rotate_refresh_token(self, refresh_token: str) -> tuple[str, str, Admin]:
        """Rotate-on-use: consume the presented token, issue a new pair.

        Returns (access_token, refresh_token, admin). If two requests race
        with the same token, only one wins; the other gets TOKEN_REVOKED.
        """
        token_hash, admin = self._check_refresh(refresh_token)
        if not self._tokens.consume(token_hash, self._clock.now()):
            raise AuthError(AuthErrorCode.TOKEN_REVOKED, "Refresh token expired or revoked.")
        return self.issue_access_token(admin), self.issue_refresh_token(admin), admin.sanitized()

    def revoke(self, refresh_token: str, admin_id: int | None = None) -> bool:
        """Revoke one refresh token. Idempotent; unknown tokens are a no-op.

        With admin_id, a token belonging to another admin is left alone.
        """
        return self._tokens.revoke_by_hash(self.hash_token(refresh_token), admin_id)

    def revoke_all(self, admin_id: int) -> int:
        """Revoke every live refresh token owned by admin_id."""
        count = self._tokens.revoke_all(admin_id)
        logger.info("Revoked %d refresh token(s) for admin_id=%s", count, admin_id)
        return count

    def purge_expired(self) -> int:
        """Maintenance sweep: delete refresh token rows past expires_at."""
        count = self._tokens.purge_expired(self._clock.now())
        if count:
            logger.info("Purged %d expired refresh token(s)", count)
        return count
