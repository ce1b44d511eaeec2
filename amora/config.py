"""
Amora — settings.

Every knob comes from the environment (or ``.env``) through pydantic-settings.
``get_settings()`` memoises one validated instance per process; tests build
their own ``Settings(...)`` and hand it to ``create_app``.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- Document store ------------------------------------------------- #
    DATABASE_URL: str = "sqlite+aiosqlite:///./amora.db"
    AUTO_CREATE_TABLES: bool = True

    # Cloud SQL connector, used instead of DATABASE_URL when both are set
    CLOUD_SQL_USE_UNIX_SOCKET: bool = False
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    DB_USER: str = "amora"
    DB_PASSWORD: str = ""
    DB_NAME: str = "amora"

    # -- Live feeds across workers -------------------------------------- #
    REDIS_URL: str = ""  # empty: in-process change bus
    REDIS_CHANNEL_PREFIX: str = "amora:changes"

    # -- Accounts & session tokens -------------------------------------- #
    FERNET_KEY: str
    SESSION_TTL_SECONDS: int = 7 * 24 * 3600
    PASSWORD_MIN_LENGTH: int = 6

    # -- Matching & chat ------------------------------------------------ #
    THREAD_ID_SEPARATOR: str = "_"
    STRICT_MATCHING: bool = False

    # -- Runtime -------------------------------------------------------- #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "*"  # comma-separated

    @property
    def allowed_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator("THREAD_ID_SEPARATOR")
    @classmethod
    def _separator_must_not_be_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("THREAD_ID_SEPARATOR must not be empty")
        return v

    @field_validator("SESSION_TTL_SECONDS")
    @classmethod
    def _ttl_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"SESSION_TTL_SECONDS must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
