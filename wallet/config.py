"""Service configuration loaded from environment variables."""
from decimal import Decimal
from functools import lru_cache
import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORAGE_BACKENDS = ("sqlite", "memory")
DEFAULT_JWT_SECRET = "secret_key"


class Settings(BaseSettings):
    # Credentials
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_leeway_seconds: int = 0

    # Storage
    storage_backend: str = "sqlite"
    database_path: str = "./main.db"
    database_timeout_seconds: float = 5.0

    # Referral
    referral_bonus_rate: Decimal = Decimal("0.1")

    # Leaderboard
    leaderboard_size: int = 10
    max_leaderboard_size: int = 100

    # Server
    port: int = 5000
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("storage_backend")
    @classmethod
    def check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in STORAGE_BACKENDS:
            raise ValueError(f"storage_backend must be one of {', '.join(STORAGE_BACKENDS)}")
        return value

    @field_validator("referral_bonus_rate")
    @classmethod
    def check_rate(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("referral_bonus_rate must not be negative")
        return value

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        value = value.upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ValueError(f"Unknown log level {value}")
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()
