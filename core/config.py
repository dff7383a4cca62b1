"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tourbook happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  Explicit injection: the lifespan in api/main.py reads get_settings() once and
      passes the values it needs into the service constructors (token services,
      password hasher, user store, mail sender). Services never read settings
      on their own, so tests can build them with any values they like.

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved from the environment. Used for the DEBUG-conditional SECRET_KEY
      policy: dev mode generates a key with a warning, production mode refuses
      to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key is brute-forceable offline.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random per-process key would silently log every
       user out on each restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/
or mail/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tourbook.config")

_MIN_SECRET_KEY_LENGTH = 32

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tourbook_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Field names map to upper-cased
    environment variables (jwt_expires_days -> JWT_EXPIRES_DAYS).
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
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    )

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Session JWT lifetime. The jwt cookie max-age is derived from the same
    # value so cookie and token expire together.
    jwt_expires_days: int = Field(default=90, ge=1)
    password_reset_expire_minutes: int = Field(default=10, ge=1)
    # bcrypt work factor. 12 in production; tests drop to the bcrypt minimum (4).
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    forgot_password_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Outbound email (empty SMTP_HOST means dev mode: log instead of send)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "Tourbook <hello@tourbook.io>"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def jwt_expire_seconds(self) -> int:
        return self.jwt_expires_days * 24 * 60 * 60

    @property
    def password_reset_expire_seconds(self) -> int:
        return self.password_reset_expire_minutes * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def check_signing_key(self) -> "Settings":
        """Apply the session signing key policy [M6]/[M7].

        With DEBUG=true a missing key is replaced by a random one, so every
        restart logs all users out. Without DEBUG a missing key stops startup.
        A key shorter than _MIN_SECRET_KEY_LENGTH is rejected in both modes.
        """
        if self.secret_key:
            if len(self.secret_key) < _MIN_SECRET_KEY_LENGTH:
                raise ValueError(f"SECRET_KEY must be at least {_MIN_SECRET_KEY_LENGTH} characters.")
            return self

        if not self.debug:
            raise ValueError(
                "SECRET_KEY is not set. Tourbook signs session tokens with it and "
                "will not start without one. Set DEBUG=true for local development."
            )
        self.secret_key = secrets.token_hex(_MIN_SECRET_KEY_LENGTH)
        logger.warning("SECRET_KEY not set; generated a throwaway key (sessions end on restart)")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first use.

    Tests that change the environment must call get_settings.cache_clear().
    """
    return Settings()
