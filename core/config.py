"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the admin auth core happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead, or better, receive a Settings instance from whoever constructs you.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      FastAPI lifespan and the CLI are the only callers; services receive the
      instance through their constructors.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and the
  refresh-token HMAC both rely on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("adminauth.config")

_DEFAULT_DB_URL = "sqlite:///admin_auth.db"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true for the key).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    access_token_expire_seconds: int = Field(default=24 * 3600, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    jwt_issuer: str = "adminauth-server"
    jwt_audience: str = "adminauth-admin"
    # Off by default: a refresh token is re-verified, not replaced, on /refresh.
    refresh_rotate_on_use: bool = False
    token_purge_interval_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Lockout and password policy
    # ------------------------------------------------------------------

    max_login_attempts: int = Field(default=5, ge=1)
    lockout_minutes: int = Field(default=15, ge=1)
    password_min_length: int = Field(default=8, ge=1)
    # bcrypt work factor. Tests lower this to keep the suite fast.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    # Minimum delay on credential failures (unknown user, wrong password).
    failure_delay_ms: int = Field(default=100, ge=0)
    failure_delay_jitter_ms: int = Field(default=100, ge=0)

    # ------------------------------------------------------------------
    # Rate limiting (limits library syntax)
    # ------------------------------------------------------------------

    login_rate_limit: str = "5/15 minutes"
    api_rate_limit: str = "100/minute"

    # ------------------------------------------------------------------
    # Bootstrap admin -- seeded only when the admins table is empty
    # ------------------------------------------------------------------

    bootstrap_admin_username: str = "admin"
    bootstrap_admin_password: str = "admin123"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def lockout_seconds(self) -> int:
        return self.lockout_minutes * 60


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and pass it to the services.
    """
    return Settings()
