from __future__ import annotations

import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central application configuration.

    All values can be overridden via environment variables (or a .env file at project root).
    """

    # General project information
    PROJECT_NAME: str = "Batch Request Queue"

    # API versioning
    API_V1_STR: str = ""

    # -------------------
    # App / HTTP server
    # -------------------
    ENV: str = Field(default="dev", description="Environment name (dev|staging|prod)")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_NAME: str = Field(default="batch.queue", description="Python Logger name for the batch queue service.")
    DEBUG: bool = Field(default=False, description="Include tracebacks in error responses")
    HOST: str = Field(default="0.0.0.0", description="Bind address")
    PORT: int = Field(default=5010)

    # CORS
    CORS_ORIGINS: str = Field(default="", description="Comma-separated origins")

    # -------------
    # Queue settings
    # -------------
    QUEUE_BACKEND: str = Field(default="memory", description="memory|redis")
    QUEUE_CHECK_INTERVAL_MS: int = Field(
        default=1000, description="Interval between claim attempts while a worker waits for work"
    )
    QUEUE_CLEANUP_BATCH_SIZE: int = Field(
        default=20, description="Number of completed records deleted per retention sweep batch"
    )
    QUEUE_MAX_CAS_ATTEMPTS: int = Field(
        default=10, description="Attempts at a conditional write before giving up on a contended entry"
    )
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    REDIS_KEY_PREFIX: str = Field(default="", description="Prefix for all queue keys, e.g. 'prod:'")

    # -------------
    # Cache settings
    # -------------
    CACHE_BACKEND: str = Field(default="file", description="Only 'file' for now.")
    CACHE_DIR: str = Field(default="./cache", description="Root directory of the file result cache")
    CACHE_URL_PREFIX: str = Field(default="http://localhost/service/report/")
    CACHE_DEFAULT_SUFFIX: str = Field(default="csv", description="Suffix of the canonical result format")

    # -------------
    # Request handling
    # -------------
    DEFAULT_ESTIMATED_DURATION_MS: int = Field(
        default=60000, description="Estimate used for submissions that don't provide one"
    )
    STATUS_VISIBILITY_RETRIES: int = Field(
        default=3, description="Re-checks of the cache when the queue reports a result the cache can't see yet"
    )
    STATUS_VISIBILITY_RETRY_DELAY_MS: int = Field(default=250)

    # Retention of completed request records
    COMPLETED_RETENTION_HOURS: int = Field(default=168, description="Keep completed records this long")
    CLEANUP_INTERVAL_SECONDS: int = Field(
        default=3600, description="Run the retention sweep every N seconds (0 = disabled)"
    )

    # -------------
    # Pydantic cfg
    # -------------
    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(__file__), "../../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Cached accessor so we don't parse .env multiple times.
    """
    return Settings()
