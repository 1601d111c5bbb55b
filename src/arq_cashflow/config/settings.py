"""Configuration settings for the ArqCashflow series engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Flat settings read from environment variables or a local ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Persistence
    database_url: str = Field(
        default="sqlite+aiosqlite:///./arqcashflow.db", validation_alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, validation_alias="DATABASE_ECHO")
    transaction_timeout_seconds: float = Field(
        default=15.0, gt=0, validation_alias="TRANSACTION_TIMEOUT_SECONDS"
    )

    # Series generation caps
    series_horizon_years: int = Field(
        default=2, ge=1, le=10, validation_alias="SERIES_HORIZON_YEARS"
    )
    series_max_occurrences: int = Field(
        default=100, ge=1, le=1000, validation_alias="SERIES_MAX_OCCURRENCES"
    )
    day_of_month_policy: Literal["clamp", "rollover"] = Field(
        default="clamp", validation_alias="DAY_OF_MONTH_POLICY"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
