"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CredKeep happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing signing secrets with a warning;
      production mode refuses to start without them.

Security notes:
  Signing secrets shorter than 32 chars are rejected outright. HMAC-SHA256 and
  JWT signing both rely on key entropy.

  The access and refresh secrets must differ. A refresh token must never verify
  as an access token (or the reverse).

  Token lifetimes are validated at load time. A typo such as "15x" is a startup
  failure, not a silent fallback to some default lifetime.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or notify/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.durations import parse_duration

logger = logging.getLogger("credkeep.config")

_MIN_SECRET_LENGTH = 32


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
    environment: Literal["production", "development", "test"] = "development"
    database_url: str = ""

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises.
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    # HMAC key for API key digests. Falls back to jwt_secret when unset.
    api_key_secret: str = ""

    access_token_ttl: str = "15m"
    refresh_token_ttl: str = "30d"

    # ------------------------------------------------------------------
    # Passwords and one-time tokens
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    verification_token_ttl_minutes: int = 60
    reset_token_ttl_minutes: int = 60

    # ------------------------------------------------------------------
    # Email (SMTP). No host means log-only dev mode.
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:3000"
    app_name: str = "CredKeep"
    email_host: str = ""
    email_port: int = 587
    email_user: str = ""
    email_password: str = ""
    email_use_tls: bool = True
    email_from: str = ""
    email_from_name: str = "CredKeep"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    default_rate_limit: str = "100/15minute"
    login_rate_limit: str = "5/15minute"
    password_reset_rate_limit: str = "3/hour"
    rate_limit_key_strategy: Literal["ip", "api_key"] = "ip"

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    max_api_keys_per_account: int = 10

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_token_ttl", "refresh_token_ttl")
    @classmethod
    def validate_ttl(cls, value: str) -> str:
        """Reject duration specs that parse_duration() cannot read."""
        parse_duration(value)
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        if not 4 <= value <= 15:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 15.")
        return value

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce signing-secret policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            JWT secret is missing.

        Both modes: reject secrets shorter than 32 characters, and reject an
            access secret that equals the refresh secret.
        """
        for name in ("jwt_secret", "jwt_refresh_secret"):
            if getattr(self, name):
                continue
            if self.debug:
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            else:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if not self.api_key_secret:
            self.api_key_secret = self.jwt_secret
        for name in ("jwt_secret", "jwt_refresh_secret", "api_key_secret"):
            if len(getattr(self, name)) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
