"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for TokenGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  Immutable AuthConfig: components (token codec, hasher, session service) never
      see Settings. The app factory calls Settings.auth_config() once and hands
      the frozen dataclass to each component's constructor.

Security notes:
  [M6] SECRET_KEY shorter than 32 characters is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  SECRET_KEY is held as a SecretStr so it renders as '**********' in reprs,
  validation errors, and log lines.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or client/.
"""

import logging
import re
import secrets
from dataclasses import dataclass, field
from functools import lru_cache

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokengate.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

MIN_SECRET_LENGTH = 32
MIN_BCRYPT_ROUNDS = 10


def parse_duration(value: str | int) -> int:
    """Convert '15m', '7d', '3600s' or a bare integer into seconds.

    Raises ValueError for anything else, including zero -- a zero-lifetime
    token is a configuration mistake, not a feature.
    """
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(value)
        if match is None:
            raise ValueError(f"Invalid duration {value!r}. Use <int>[s|m|h|d], e.g. '15m' or '7d'.")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ValueError("Duration must be positive.")
    return seconds


@dataclass(frozen=True)
class AuthConfig:
    """Immutable auth configuration handed to each component at construction.

    secret_key is excluded from repr so an accidental log of the config does
    not leak signing material.
    """

    secret_key: str = field(repr=False)
    access_token_ttl: int
    refresh_token_ttl: int
    bcrypt_rounds: int = 12
    secure_cookies: bool = False
    refresh_cookie_name: str = "refresh_token"
    refresh_cookie_path: str = "/api/auth"
    login_rate_limit: str = "5/15 minutes"
    register_rate_limit: str = "5/15 minutes"
    debug: bool = False


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The validators enforce
    production-safety rules at startup, so a malformed value stops the process
    before it serves a single request.
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
    secret_key: SecretStr = SecretStr("")
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Stored as seconds after validation; env values may use '15m' / '7d'.
    jwt_expire: int = 15 * 60
    jwt_refresh_expire: int = 7 * 86400

    # ------------------------------------------------------------------
    # Passwords and cookies
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting (limits rate-string grammar)
    # ------------------------------------------------------------------

    login_rate_limit: str = "5/15 minutes"
    register_rate_limit: str = "5/15 minutes"
    api_rate_limit: str = "100/15 minutes"

    # ------------------------------------------------------------------
    # Persistence and HTTP
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///tokengate_auth.db"
    store_timeout_seconds: float = 5.0
    cors_origins: list[str] = ["http://localhost:5173"]
    # Host header allowlist for TrustedHostMiddleware.
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expire", "jwt_refresh_expire", mode="before")
    @classmethod
    def _parse_durations(cls, value):
        return parse_duration(value)

    @field_validator("bcrypt_rounds")
    @classmethod
    def _check_rounds(cls, value: int) -> int:
        if value < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {MIN_BCRYPT_ROUNDS}.")
        return value

    @field_validator("store_timeout_seconds")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be positive.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key.get_secret_value():
            if self.debug:
                self.secret_key = SecretStr(secrets.token_hex(32))
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key.get_secret_value().encode("utf-8")) < MIN_SECRET_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {MIN_SECRET_LENGTH} bytes.")
        if self.jwt_refresh_expire <= self.jwt_expire:
            raise ValueError("JWT_REFRESH_EXPIRE must be longer than JWT_EXPIRE.")
        return self

    def auth_config(self) -> AuthConfig:
        """Snapshot the auth-related settings into an immutable AuthConfig."""
        return AuthConfig(
            secret_key=self.secret_key.get_secret_value(),
            access_token_ttl=self.jwt_expire,
            refresh_token_ttl=self.jwt_refresh_expire,
            bcrypt_rounds=self.bcrypt_rounds,
            secure_cookies=self.secure_cookies,
            login_rate_limit=self.login_rate_limit,
            register_rate_limit=self.register_rate_limit,
            debug=self.debug,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and pass it to api.main.create_app().
    """
    return Settings()
