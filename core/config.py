"""
core/config.py -- Centralized service configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
at the composition root (api/main.py, main.py) and pass the values each
component needs into its constructor.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  Frozen BaseSettings: the model is immutable after construction. Components
      receive plain values (secret key, lifetimes, bcrypt cost) rather than a
      reference to a mutable global config object.

  Duration fields: ACCESS_TOKEN_EXPIRE, REFRESH_TOKEN_EXPIRE and
      RESET_TOKEN_EXPIRE accept either integer seconds ("900") or a compact
      "<n><unit>" string with unit s/m/h/d ("15m", "7d"). They are normalized
      to int seconds during validation.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every access token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. In debug mode a random key is generated with a
       warning; tokens will not survive a restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from functools import lru_cache
from typing import Any

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("procureauth.config")

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


def parse_duration(value: Any) -> int:
    """Convert "15m" / "7d" / "3600" / 3600 into a positive number of seconds.

    Raises ValueError for anything else so a typo in the environment fails
    at startup instead of silently falling back to a default lifetime.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        text = str(value).strip().lower()
        if text.isdigit():
            seconds = int(text)
        else:
            match = _DURATION_RE.match(text)
            if match is None:
                raise ValueError(f"Invalid duration {value!r}; expected seconds or <n>[s|m|h|d]")
            seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive, got {value!r}")
    return seconds


class Settings(BaseSettings):
    """Service settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (given DEBUG=true or an explicit
    secret_key).

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `bcrypt_rounds` from BCRYPT_ROUNDS.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    # debug must stay declared before secret_key: the secret_key validator
    # reads the already-validated debug flag from info.data.
    debug: bool = False
    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev key or raises, so callers never see "".
    secret_key: str = Field(default="", validate_default=True)
    service_name: str = "auth-service"
    log_level: str = "INFO"
    database_url: str = "sqlite:///procureauth.db"

    # ------------------------------------------------------------------
    # Token lifetimes (seconds after validation)
    # ------------------------------------------------------------------

    access_token_expire: int = 15 * 60
    refresh_token_expire: int = 7 * 24 * 60 * 60
    reset_token_expire: int = 60 * 60

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # 12 rounds keeps a verification in the ~250ms range on commodity
    # hardware. Raise it as hardware improves; existing hashes keep working
    # because bcrypt stores the cost inside each hash.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Notifications (empty URL means messages are logged and dropped)
    # ------------------------------------------------------------------

    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    # 0 disables the background refresh-token sweep.
    refresh_token_sweep_seconds: int = Field(default=3600, ge=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_token_expire", "refresh_token_expire", "reset_token_expire", mode="before")
    @classmethod
    def normalize_duration(cls, value: Any) -> int:
        return parse_duration(value)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL {value!r}")
        return level

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str, info: ValidationInfo) -> str:
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Access and reset tokens will not survive restart -- acceptable
            for local dev. Refresh tokens are unaffected (they are store-backed).

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not value:
            if info.data.get("debug"):
                logger.warning("Using auto-generated SECRET_KEY. Access tokens will not persist across restarts.")
                return secrets.token_hex(32)
            raise ValueError(
                "SECRET_KEY is required in production mode. "
                "Set SECRET_KEY in your environment or .env file. "
                "To run in development mode, set DEBUG=true."
            )
        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return the service Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Only composition roots call this; components take explicit values.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
