"""
core/config.py -- Marquee settings, read once from the environment.

Every tunable (database, token lifetimes, limiter, CORS, mail) is a field on
Settings. Code reads configuration through get_settings(), never os.environ;
main.py is the one place that writes environment variables, to turn CLI
flags into overrides before the first get_settings() call.

get_settings() is wrapped in lru_cache, so the environment and .env are
parsed on first use and every later caller shares that instance. Tests that
change the environment call get_settings.cache_clear().

SECRET_KEY keys the HMAC over stored token hashes:
  - shorter than 32 characters is refused in every mode;
  - unset with DEBUG=true, a throwaway key is generated (tokens die with the
    process, which is fine on a laptop);
  - unset otherwise, startup fails. Silently rotating the key on each boot
    would log every user out.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or movies/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("marquee.config")

_DEFAULT_DB_URL = "sqlite:///marquee.db"


class Settings(BaseSettings):
    """Marquee configuration. Every field has a default, so an empty
    environment with DEBUG=true is a working development setup.
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
    env: str = "development"  # "development" | "staging" | "production"
    port: int = 4000
    # "" means unset; validate_secret_key replaces or rejects it.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Upper bound (seconds) on any single store call. Applied as the SQLite
    # busy timeout or the PostgreSQL statement_timeout.
    db_timeout: float = 3.0

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    activation_token_ttl_seconds: int = 3 * 24 * 60 * 60
    authentication_token_ttl_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    limiter_rps: float = 2.0
    limiter_burst: int = 4
    limiter_enabled: bool = True
    limiter_idle_seconds: float = 180.0
    limiter_sweep_seconds: float = 60.0
    # slowapi limit string for POST /v1/tokens/authentication.
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------

    cors_trusted_origins: list[str] = []

    # ------------------------------------------------------------------
    # Mail via AWS SES (empty sender disables delivery)
    # ------------------------------------------------------------------

    mail_sender: str = ""
    ses_region: str = "us-east-1"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a throwaway key under DEBUG, otherwise require a real one."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "SECRET_KEY not set; generated a temporary key. Tokens issued now stop working on restart."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required unless DEBUG=true. "
                    "Export it or add it to .env (at least 32 characters)."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long.")
        return self

    @model_validator(mode="after")
    def validate_limiter(self) -> "Settings":
        """Reject limiter parameters that would make the token bucket meaningless."""
        if self.limiter_rps < 0:
            raise ValueError("LIMITER_RPS must not be negative.")
        if self.limiter_burst < 1:
            raise ValueError("LIMITER_BURST must be at least 1.")
        if self.bcrypt_rounds < 4 or self.bcrypt_rounds > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Build Settings on first call; later calls return the same object."""
    return Settings()
