"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
All configuration is loaded from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict

from ogrexport.schemas.ogr_export import ConnectionParams


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Settings are validated using Pydantic and cached for performance.
    Values may also come from a .env file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    APP_NAME: str = "ogr-export-service"
    APP_ENV: str | None = None
    DEBUG: bool = False
    LOG_LEVEL: str | None = None

    # -------------------------------------------------------------------------
    # API
    # -------------------------------------------------------------------------
    API_PREFIX: str = "/api/v1"

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "postgres"

    @property
    def connection_params(self) -> ConnectionParams:
        """Default connection parameters handed to the export pipeline."""
        return ConnectionParams(
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            user=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            dbname=self.POSTGRES_DB,
        )

    # -------------------------------------------------------------------------
    # OGR exports
    # -------------------------------------------------------------------------
    # Converter binary; accepts the legacy OGR2OGR_CMD name too.
    OGR2OGR_COMMAND: str = Field(
        default="ogr2ogr",
        validation_alias=AliasChoices("OGR2OGR_COMMAND", "OGR2OGR_CMD"),
    )
    # Spool directory for baked artifacts. Must be shared by nothing but
    # this service's processes (paths embed the pid).
    EXPORT_TMP_DIR: str = "/tmp"
    # Converter timeout in milliseconds; 0 disables it.
    EXPORT_TIMEOUT_MS: int = 0
    # Bytes read from the artifact per write to a client sink.
    EXPORT_CHUNK_SIZE: int = 64 * 1024
    # Chunks buffered per HTTP client before the transfer waits on it.
    EXPORT_SINK_QUEUE_SIZE: int = 16
    # A client that reads nothing for this long is dropped so the queue
    # behind it keeps moving.
    EXPORT_SINK_WRITE_TIMEOUT_SECONDS: float = 120.0

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    @property
    def is_test(self) -> bool:
        return self.APP_ENV == "test"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once and reused.

    Returns:
        Settings: Validated settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
