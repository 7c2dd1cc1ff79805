"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, jwt_issuer -> JWT_ISSUER).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. A misconfigured signing setup must abort process start, never
      run in a degraded state.

  JwtSettings: the frozen slice of Settings the TokenService needs. Built once
      in the application lifespan and injected; nothing mutates it afterwards.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. HS256 signing and the
  refresh-token HMAC both rely on key entropy.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or persistence/.
"""

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("trainingcrm.config")


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
    # Tokens
    # ------------------------------------------------------------------

    jwt_issuer: str = "trainingcrm"
    jwt_audience: str = "trainingcrm-clients"
    jwt_expiry_minutes: int = 60
    refresh_token_expiry_days: int = 7

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///./trainingcrm.db"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_setup(self) -> "Settings":
        """Refuse to start with a signing configuration that cannot be trusted.

        Dev mode (DEBUG=true): a missing SECRET_KEY is replaced by a random one
            with a warning. Tokens will not survive restart.

        Production mode: a missing SECRET_KEY raises.

        Both modes: short keys, empty issuer/audience and non-positive
            lifetimes are rejected.
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
        if not self.jwt_issuer or not self.jwt_audience:
            raise ValueError("JWT_ISSUER and JWT_AUDIENCE must not be empty.")
        if self.jwt_expiry_minutes <= 0:
            raise ValueError("JWT_EXPIRY_MINUTES must be positive.")
        if self.refresh_token_expiry_days <= 0:
            raise ValueError("REFRESH_TOKEN_EXPIRY_DAYS must be positive.")
        return self


@dataclass(frozen=True)
class JwtSettings:
    secret: str
    issuer: str
    audience: str
    expiry_minutes: int
    refresh_expiry_days: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwtSettings":
        return cls(
            secret=settings.secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            expiry_minutes=settings.jwt_expiry_minutes,
            refresh_expiry_days=settings.refresh_token_expiry_days,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
