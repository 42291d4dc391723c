"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from datasearches.core.models.base import AreaUnit


class Settings(BaseSettings):
    """Application settings.

    All settings can be overridden via environment variables.
    Prefix: DATASEARCHES_
    """

    model_config = SettingsConfigDict(
        env_prefix="DATASEARCHES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Workspace (DuckDB)
    workspace_path: str = Field(
        default=":memory:",
        description="Path to the DuckDB workspace file, or :memory: for in-memory",
    )
    duckdb_memory_limit: str = Field(
        default="2GB",
        description="Memory limit for DuckDB",
    )

    # Geoprocessing engine
    poll_interval_seconds: float = Field(
        default=1.0,
        description="Seconds between job status checks while an operation executes",
    )

    # Temporary artifacts created by each export run
    temp_feature_class: str = Field(
        default="TempOutput",
        description="Name of the temporary feature class used during an export",
    )
    temp_table: str = Field(
        default="TempTable",
        description="Name of the temporary statistics table used during an export",
    )

    # Export defaults
    default_area_unit: AreaUnit = Field(default=AreaUnit.HECTARES)
    rep_char: str = Field(
        default="_",
        description="Replacement for characters that are illegal in file names",
    )

    # Logging
    log_level: str = Field(default="WARNING")
    log_format: str = Field(default="console")  # 'json' or 'console'
    log_file: str | None = Field(
        default=None,
        description="Append-only search log written alongside structured logs",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
