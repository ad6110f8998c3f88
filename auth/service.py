"""
auth/service.py -- Authentication service: credentials, lockout, audit.

AuthService is the only writer of Admin rows (attempt counter, lock,
last-login, password hash, active flag). It delegates every refresh-token
mutation to TokenService and appends an audit entry on every decision
branch -- success or failure.

Lockout state machine per admin:

    Unlocked(0) --fail--> Unlocked(k)          k < max_login_attempts
    Unlocked(k) --fail--> Locked(until=T)      k + 1 = max_login_attempts
    Locked(T)   --attempt at now >= T--> Unlocked(0), then evaluated normally
    Unlocked(k) --success--> Unlocked(0)

While Locked, the correct password is still refused.

Timing equalization:
  - Unknown username: bcrypt runs against a dummy hash of the same cost, so
    the lookup miss is not measurably faster than a real check.
  - Unknown username and wrong password both sleep for the configured
    failure delay (plus jitter) via the injected Clock before raising the
    same INVALID_CREDENTIALS error with the same message.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import secrets
from datetime import timedelta

from sqlalchemy.exc import IntegrityError

from auth.clock import Clock
from auth.errors import AuthError, AuthErrorCode, invalid_credentials
from auth.models import ADMIN_ROLE, Admin, AuditAction, AuditLogEntry, IssuedTokens
from auth.passwords import hash_password, normalize_username, password_problems, username_problems, verify_password
from auth.store import AdminStore, AuditLogStore
from auth.tokens import TokenService
from core.config import Settings

logger = logging.getLogger("adminauth.auth")

AUDIT_PAGE_MAX = 500


class AuthService:
    """Credential verification, lockout policy, and admin lifecycle.

    Constructed once at process start (FastAPI lifespan or CLI) with its
    stores, the TokenService, settings, and a Clock.
    """

    def __init__(
        self,
        admins: AdminStore,
        audit: AuditLogStore,
        tokens: TokenService,
        settings: Settings,
        clock: Clock,
    ) -> None:
        self._admins = admins
        self._audit = audit
        self._tokens = tokens
        self._settings = settings
        self._clock = clock
        # Same work factor as real hashes so the unknown-user path costs the same.
        self._dummy_hash = hash_password("adminauth_timing_dummy", rounds=settings.bcrypt_rounds)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_event(
        self,
        action: AuditAction,
        success: bool,
        admin_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: str | None = None,
    ) -> None:
        """Append one audit entry. Used internally and by the HTTP layer."""
        self._audit.append(
            AuditLogEntry(
                action=action,
                success=success,
                admin_id=admin_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            ),
            self._clock.now(),
        )

    def get_audit_log(self, limit: int = 100, offset: int = 0) -> list[AuditLogEntry]:
        if not 1 <= limit <= AUDIT_PAGE_MAX or offset < 0:
            raise AuthError(
                AuthErrorCode.VALIDATION_FAILED,
                f"limit must be between 1 and {AUDIT_PAGE_MAX}; offset must be >= 0.",
            )
        return self._audit.list_entries(limit=limit, offset=offset)

    def count_audit_entries(self) -> int:
        return self._audit.count()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _failure_delay(self) -> None:
        jitter = secrets.randbelow(self._settings.failure_delay_jitter_ms + 1)
        self._clock.sleep((self._settings.failure_delay_ms + jitter) / 1000)

    def authenticate(
        self,
        username: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Admin:
        """Verify credentials and apply the lockout policy.

        Returns the sanitized Admin on success. Raises AuthError with
        INVALID_CREDENTIALS, ACCOUNT_LOCKED or ACCOUNT_DISABLED.
        """
        username = normalize_username(username)
        admin = self._admins.get_by_username(username)

        def audit_failure(details: str) -> None:
            self.record_event(
                AuditAction.login_failed,
                False,
                admin.id if admin else None,
                ip_address,
                user_agent,
                details,
            )

        if admin is None:
            verify_password(password, self._dummy_hash)
            audit_failure("User not found")
            logger.info("Login failed: unknown username from %s", ip_address)
            self._failure_delay()
            raise invalid_credentials()

        now = self._clock.now()
        # Lock expired: back to Unlocked(0) before evaluating this attempt.
        # A failed clear means a concurrent attempt changed the lock, so the
        # row is re-read and checked again.
        while admin.locked_until is not None and not admin.is_locked(now):
            if self._admins.clear_lockout(admin.id, admin.locked_until):
                admin = dataclasses.replace(admin, failed_attempt_count=0, locked_until=None)
            else:
                admin = self._admins.get_by_id(admin.id)

        if admin.is_locked(now):
            audit_failure("Account locked")
            minutes_left = math.ceil((admin.locked_until - now).total_seconds() / 60)
            raise AuthError(
                AuthErrorCode.ACCOUNT_LOCKED,
                f"Account locked. Try again in {minutes_left} minute(s).",
            )

        if not admin.is_active:
            audit_failure("Account disabled")
            raise AuthError(AuthErrorCode.ACCOUNT_DISABLED, "Account is disabled.")

        if not verify_password(password, admin.password_hash or ""):
            threshold = self._settings.max_login_attempts
            count, locked_until = self._admins.record_failed_attempt(
                admin.id,
                threshold,
                now + timedelta(seconds=self._settings.lockout_seconds),
            )
            locked = locked_until is not None and locked_until > now
            audit_failure(f"Invalid password (attempt {count}/{threshold})" + ("; account locked" if locked else ""))
            if locked:
                logger.warning("Account %r locked after %d failed attempts", username, count)
                raise AuthError(
                    AuthErrorCode.ACCOUNT_LOCKED,
                    f"Too many failed attempts. Account locked for {self._settings.lockout_minutes} minutes.",
                )
            logger.info("Login failed for %r (attempt %d/%d)", username, count, threshold)
            self._failure_delay()
            raise invalid_credentials()

        self._admins.record_successful_login(admin.id, now)
        self.record_event(AuditAction.login_success, True, admin.id, ip_address, user_agent)
        logger.info("Login succeeded for %r", username)
        return dataclasses.replace(
            admin,
            failed_attempt_count=0,
            locked_until=None,
            last_login_at=now,
        ).sanitized()

    def login(
        self,
        username: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedTokens:
        """authenticate() followed by issuance of an access/refresh pair."""
        admin = self.authenticate(username, password, ip_address, user_agent)
        return IssuedTokens(
            access_token=self._tokens.issue_access_token(admin),
            refresh_token=self._tokens.issue_refresh_token(admin),
            expires_in=self._tokens.access_token_ttl,
            admin=admin,
        )

    # ------------------------------------------------------------------
    # Session endpoints (refresh / logout)
    # ------------------------------------------------------------------

    def refresh(
        self,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedTokens:
        """Exchange a refresh token for a new access token (and, with
        refresh_rotate_on_use, a replacement refresh token)."""
        try:
            if self._settings.refresh_rotate_on_use:
                access, new_refresh, admin = self._tokens.rotate_refresh_token(refresh_token)
            else:
                access, admin = self._tokens.rotate_access_token(refresh_token)
                new_refresh = None
        except AuthError as exc:
            self.record_event(
                AuditAction.token_refresh_failed, False, None, ip_address, user_agent, exc.code.value
            )
            raise
        self.record_event(AuditAction.token_refreshed, True, admin.id, ip_address, user_agent)
        return IssuedTokens(
            access_token=access,
            refresh_token=new_refresh,
            expires_in=self._tokens.access_token_ttl,
            admin=admin,
        )

    def logout(
        self,
        admin_id: int,
        refresh_token: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        if refresh_token:
            revoked = self._tokens.revoke(refresh_token, admin_id)
            details = "Refresh token revoked" if revoked else "Refresh token not found"
        else:
            details = "No refresh token presented"
        self.record_event(
            AuditAction.logout,
            True,
            admin_id,
            ip_address,
            user_agent,
            details,
        )

    def logout_all(self, admin_id: int, ip_address: str | None = None, user_agent: str | None = None) -> int:
        count = self._tokens.revoke_all(admin_id)
        self.record_event(
            AuditAction.logout_all_devices, True, admin_id, ip_address, user_agent, f"Revoked {count} token(s)"
        )
        return count

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    def change_password(
        self,
        admin_id: int,
        old_password: str,
        new_password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Replace the password hash and revoke every refresh token.

        A wrong old password raises INVALID_CREDENTIALS with a message that
        does not say which field was wrong.
        """

        def audit_failure(details: str) -> None:
            self.record_event(AuditAction.password_change_failed, False, admin_id, ip_address, user_agent, details)

        admin = self._admins.get_by_id(admin_id)
        if admin is None:
            audit_failure("Admin not found")
            raise AuthError(AuthErrorCode.NOT_FOUND, "Admin not found.")
        if not admin.is_active:
            audit_failure("Account disabled")
            raise AuthError(AuthErrorCode.ACCOUNT_DISABLED, "Account is disabled.")

        problems = password_problems(new_password, self._settings.password_min_length)
        if problems:
            audit_failure("New password rejected by policy")
            raise AuthError(AuthErrorCode.VALIDATION_FAILED, " ".join(problems))

        if not verify_password(old_password, admin.password_hash or ""):
            audit_failure("Invalid current password")
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, "Password change failed: invalid credentials.")

        self._admins.update_password_hash(admin_id, hash_password(new_password, rounds=self._settings.bcrypt_rounds))
        revoked = self._tokens.revoke_all(admin_id)
        self.record_event(
            AuditAction.password_changed,
            True,
            admin_id,
            ip_address,
            user_agent,
            f"Revoked {revoked} refresh token(s)",
        )
        logger.info("Password changed for admin_id=%s", admin_id)

    # ------------------------------------------------------------------
    # Admin lifecycle
    # ------------------------------------------------------------------

    def create_admin(
        self,
        username: str,
        password: str,
        email: str | None = None,
        actor_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Admin:
        """Validate and insert a new admin. Raises VALIDATION_FAILED or USERNAME_TAKEN."""
        username = normalize_username(username)

        def audit_failure(details: str) -> None:
            self.record_event(AuditAction.admin_created, False, actor_id, ip_address, user_agent, details)

        problems = username_problems(username) + password_problems(password, self._settings.password_min_length)
        if problems:
            audit_failure(f"Rejected admin {username!r}: validation failed")
            raise AuthError(AuthErrorCode.VALIDATION_FAILED, " ".join(problems))

        if self._admins.get_by_username(username) is not None:
            audit_failure(f"Rejected admin {username!r}: username exists")
            raise AuthError(AuthErrorCode.USERNAME_TAKEN, "Username already exists.")

        admin = Admin(
            username=username,
            password_hash=hash_password(password, rounds=self._settings.bcrypt_rounds),
            role=ADMIN_ROLE,
            email=email,
        )
        try:
            new_id = self._admins.create_admin(admin, self._clock.now())
        except IntegrityError as exc:
            # A concurrent request inserted the same username first.
            audit_failure(f"Rejected admin {username!r}: username exists")
            raise AuthError(AuthErrorCode.USERNAME_TAKEN, "Username already exists.") from exc

        self.record_event(AuditAction.admin_created, True, actor_id, ip_address, user_agent, f"Created admin: {username}")
        logger.info("Admin %r created (id=%s) by admin_id=%s", username, new_id, actor_id)
        return self.get_admin(new_id)

    def ensure_bootstrap_admin(self) -> Admin | None:
        """Seed the configured bootstrap admin if no admin exists yet.

        The bootstrap password bypasses the complexity policy and must be
        changed immediately. Returns the new admin, or None if admins exist.
        """
        if self._admins.has_admins():
            return None
        username = normalize_username(self._settings.bootstrap_admin_username)
        admin = Admin(
            username=username,
            password_hash=hash_password(self._settings.bootstrap_admin_password, rounds=self._settings.bcrypt_rounds),
        )
        try:
            new_id = self._admins.create_admin(admin, self._clock.now())
        except IntegrityError:
            return None
        self.record_event(AuditAction.admin_created, True, new_id, details="Bootstrap admin seeded")
        logger.warning("DEFAULT ADMIN CREATED: username=%r. CHANGE THIS PASSWORD IMMEDIATELY!", username)
        return self.get_admin(new_id)

    def get_admin(self, admin_id: int) -> Admin:
        admin = self._admins.get_by_id(admin_id)
        if admin is None:
            raise AuthError(AuthErrorCode.NOT_FOUND, "Admin not found.")
        return admin.sanitized()

    def list_admins(self) -> list[Admin]:
        return [a.sanitized() for a in self._admins.list_admins()]

    def set_active(
        self,
        admin_id: int,
        active: bool,
        actor_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Admin:
        """Soft-(de)activate an admin. Deactivation revokes all their refresh tokens.

        Guards: no self-deactivation, and the last active admin stays active.
        """
        action = AuditAction.admin_activated if active else AuditAction.admin_deactivated

        def audit_failure(details: str) -> None:
            self.record_event(action, False, actor_id, ip_address, user_agent, details)

        target = self._admins.get_by_id(admin_id)
        if target is None:
            audit_failure(f"Target admin_id={admin_id} not found")
            raise AuthError(AuthErrorCode.NOT_FOUND, "Admin not found.")
        if not active:
            if target.id == actor_id:
                audit_failure("Self-deactivation refused")
                raise AuthError(AuthErrorCode.VALIDATION_FAILED, "You cannot deactivate your own account.")
            if target.is_active and self._admins.count_active_admins() <= 1:
                audit_failure("Last active admin")
                raise AuthError(AuthErrorCode.VALIDATION_FAILED, "Cannot deactivate the last active admin account.")

        self._admins.set_active(admin_id, active)
        if not active:
            self._tokens.revoke_all(admin_id)
        self.record_event(action, True, actor_id, ip_address, user_agent, f"Target admin: {target.username}")
        return self.get_admin(admin_id)
