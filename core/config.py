"""
core/config.py -- Settings for the socialfeed service, read once from the
environment (and an optional .env file) through pydantic-settings.

Everything tunable lives on Settings: the session signing key and token
lifetimes, the database URL and its timeout, the optional Redis user cache,
and both request limiters (the fixed-window gate in front of every route and
slowapi's login limit). Other modules call get_settings(); nothing else
reads os.environ.

Startup rules enforced by the validators below:
  [M6] SECRET_KEY must be at least 32 characters.
  [M7] With DEBUG off a missing SECRET_KEY refuses to start. With DEBUG on a
       throwaway key is generated, so sessions die with the process.
  Limiter counts, windows, TTLs and timeouts must all be positive.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
cache/, or social/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("socialfeed.config")

_THREE_DAYS = 3 * 24 * 60 * 60

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'socialfeed.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # Session tokens
    # ------------------------------------------------------------------

    token_expire_seconds: int = _THREE_DAYS
    token_issuer: str = "socialfeed"
    token_audience: str = "socialfeed"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    # Lifetime of the one-time activation token. Independent of the session
    # token lifetime above.
    invitation_ttl_seconds: int = _THREE_DAYS

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    db_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # User cache (Redis)
    # ------------------------------------------------------------------

    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    user_cache_ttl_seconds: int = 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit_max_requests: int = 20
    rate_limit_window_seconds: float = 5.0

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a dev key under DEBUG, otherwise require one [M7]; enforce length [M6]."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "DEBUG is on and SECRET_KEY is unset: using a generated key, sessions end at restart"
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_positive_limits(self) -> "Settings":
        """Reject zero or negative durations and counts.

        A zero window or a zero request budget would make the rate limiter
        reject everything (or nothing); a zero timeout would fail every query.
        """
        positive = {
            "token_expire_seconds": self.token_expire_seconds,
            "invitation_ttl_seconds": self.invitation_ttl_seconds,
            "db_timeout_seconds": self.db_timeout_seconds,
            "user_cache_ttl_seconds": self.user_cache_ttl_seconds,
            "rate_limit_max_requests": self.rate_limit_max_requests,
            "rate_limit_window_seconds": self.rate_limit_window_seconds,
        }
        bad = [name.upper() for name, value in positive.items() if value <= 0]
        if bad:
            raise ValueError(f"Must be positive: {', '.join(bad)}")
        return self


@lru_cache
def get_settings() -> Settings:
    """Settings singleton. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()
