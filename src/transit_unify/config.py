"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Feed merging
    merge_check_stop_type: bool = Field(
        default=True,
        validation_alias=AliasChoices("MERGE_CHECK_STOP_TYPE", "CHECK_STOP_TYPE"),
    )
    merge_check_stations: bool = Field(
        default=False,
        validation_alias=AliasChoices("MERGE_CHECK_STATIONS", "CHECK_STATIONS"),
    )
    merge_max_workers: int = Field(default=4, ge=1, le=64)

    # Stop name matching
    matcher_top_n: int = Field(default=10, ge=1, le=1000)
    geodata_min_score: float = Field(default=0.8, ge=0.0, le=1.0)
    # Degrees; wider spreads of matched positions need disambiguation
    geodata_max_spread: float = Field(default=0.003, ge=0.0)

    # GTFS loading
    gtfs_load_strict: bool = Field(
        default=True,
        validation_alias=AliasChoices("GTFS_LOAD_STRICT", "GTFS_IMPORT_STRICT"),
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
