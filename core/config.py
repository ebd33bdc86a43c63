"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TierGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, cookie_name -> COOKIE_NAME).

  @model_validator(mode="after"): cross-field validation once all fields are
      resolved. SECRET_KEY is auto-generated in dev mode and mandatory in
      production mode.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Ticket encryption
  derives its key from SECRET_KEY -- a short key weakens every ticket.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure. A random key would invalidate every outstanding
  ticket on restart.

Layer rule: core/ is the kernel. This module may not import from api/, web/
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tiergate.config")

_DATA_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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

    # ------------------------------------------------------------------
    # Session cookie
    # ------------------------------------------------------------------

    cookie_name: str = "sessionid"
    # None = browser-session cookie (no Max-Age attribute).
    cookie_expiry_seconds: Optional[int] = None
    secure_cookies: bool = False
    # Cookie path is taken from the path component of this URL.
    uri_base: str = "/"

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    user_field: str = "user"
    password_field: str = "password"

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    auth_db_url: str = f"sqlite:///{_DATA_DIR / 'tiergate_auth.db'}"
    session_db_url: str = f"sqlite:///{_DATA_DIR / 'tiergate_sessions.db'}"
    # Idle sessions older than this are refused on open and purged hourly.
    session_ttl_seconds: int = 60 * 60 * 24
    # 0 = tickets never expire.
    ticket_ttl_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # Host headers accepted by TrustedHostMiddleware (JSON list in the env).
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    # limits storage URI; memory:// is per process.
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tickets will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tickets will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
