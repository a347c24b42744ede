"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Shopfront happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      lifespan in api/main.py and the CLI in main.py are the only callers;
      everything below them receives the Settings object as a constructor
      argument (TokenIssuer, TokenAuthenticator, PasswordHasher, UserStore).

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

Security notes:
  [S1] SECRET_KEY is required. There is no generated fallback: a process that
       cannot verify the tokens it issued yesterday is broken, so a missing
       key is a hard startup failure.

  [S2] SECRET_KEY shorter than 32 chars is rejected outright. JWT HMAC
       signing relies on key entropy -- a short key weakens every token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("shopfront.config")

_ALLOWED_ALGORITHMS = ("HS256", "HS384", "HS512")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a default. Tests construct Settings
    directly with keyword arguments instead of touching the environment.
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
    log_level: str = "INFO"
    # Empty string is the sentinel for "not configured"; the model_validator
    # below refuses to start with it.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_algorithm: str = "HS256"
    # Seven days, the session length of the storefront's original login flow.
    token_expire_seconds: int = 7 * 24 * 60 * 60
    # 0 = unlimited concurrent sessions per user.
    max_sessions_per_user: int = 0

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 10

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///shopfront_auth.db"
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in _ALLOWED_ALGORITHMS:
            raise ValueError(f"JWT_ALGORITHM must be one of {', '.join(_ALLOWED_ALGORITHMS)}")
        return v

    @field_validator("token_expire_seconds")
    @classmethod
    def validate_token_expire_seconds(cls, v: int) -> int:
        if v < 1:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be at least 1")
        return v

    @field_validator("max_sessions_per_user")
    @classmethod
    def validate_max_sessions(cls, v: int) -> int:
        if v < 0:
            raise ValueError("MAX_SESSIONS_PER_USER must be 0 (unlimited) or positive")
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        # bcrypt itself accepts 4..31; above 16 a single login takes seconds.
        if v < 4 or v > 16:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 16")
        return v

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_store_timeout(cls, v: float) -> float:
        if v <= 0 or v > 60:
            raise ValueError("STORE_TIMEOUT_SECONDS must be greater than 0 and at most 60")
        return v

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATABASE_URL must be set and non-empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [S1] [S2].

        Runs after all fields are resolved so the error message can point at
        the environment variable regardless of where the value came from.
        """
        if not self.secret_key:
            raise ValueError(
                "SECRET_KEY is required. Set SECRET_KEY in your environment or .env file."
            )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    settings = Settings()
    logger.debug(
        "Settings loaded (ttl=%ss, bcrypt_rounds=%d, max_sessions=%d)",
        settings.token_expire_seconds,
        settings.bcrypt_rounds,
        settings.max_sessions_per_user,
    )
    return settings
