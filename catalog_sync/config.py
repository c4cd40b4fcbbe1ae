"""Configuration management using pydantic-settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional
import logging
import sys
import structlog


class SupplierSettings(BaseSettings):
    """Supplier channel configuration.

    All settings prefixed with SUPPLIER_ (e.g., SUPPLIER_API_BASE_URL=...)

    Two channels are configured:
    - api: rate-limited request/response API
    - bulk: bulk file-transfer feed
    """

    # Channel endpoints
    api_base_url: str = Field(
        default="http://supplier-api:8080/api",
        description="Base URL of the supplier request/response API"
    )
    bulk_base_url: str = Field(
        default="http://supplier-api:8080",
        description="Base URL of the supplier bulk feed (resources under /ftp-sync)"
    )

    # Credentials
    account_number: str = Field(
        default="",
        description="Supplier account number sent with every request"
    )
    security_token: str = Field(
        default="",
        description="Supplier security token sent with every request"
    )

    # Request Configuration
    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=600.0,
        description="Request timeout in seconds"
    )
    bulk_timeout: float = Field(
        default=300.0,
        ge=1.0,
        le=3600.0,
        description="Bulk feed request timeout in seconds (feeds are large)"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum retry attempts on connection errors"
    )
    default_rate_limit_seconds: int = Field(
        default=3600,
        ge=1,
        le=86400,
        description="Cooldown applied when a 429 response carries no Retry-After header"
    )

    model_config = SettingsConfigDict(
        env_prefix="SUPPLIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class SyncSettings(BaseSettings):
    """Sync executor configuration.

    All settings prefixed with SYNC_ (e.g., SYNC_BATCH_SIZE=100)
    """

    # Batching
    batch_size: int = Field(
        default=100,
        ge=1,
        le=5000,
        description="Records per batched upsert during full syncs"
    )
    incremental_batch_size: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Records per batch during incremental (per-record) syncs"
    )
    batch_delay_seconds: float = Field(
        default=0.1,
        ge=0.0,
        le=60.0,
        description="Pause between full-sync batches"
    )
    incremental_batch_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=300.0,
        description="Pause between incremental batches to respect API rate limits"
    )
    staging_batch_size: int = Field(
        default=100,
        ge=1,
        le=5000,
        description="Staging rows written per insert"
    )
    api_page_size: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Page size when paging the full API dataset"
    )

    # Freshness
    stale_threshold_hours: int = Field(
        default=24,
        ge=1,
        le=720,
        description="Catalog rows older than this are refreshed by incremental syncs"
    )
    rate_limit_cooldown_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="How long an endpoint stays marked limited after a rate-limited sync"
    )

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class SchedulerSettings(BaseSettings):
    """Scheduler defaults loaded from environment variables.

    All settings prefixed with SCHEDULER_ (e.g., SCHEDULER_DAILY_SYNC_TIME=03:30)
    """

    enable_daily_sync: bool = Field(
        default=True,
        description="Run a full sync once a day at daily_sync_time"
    )
    daily_sync_time: str = Field(
        default="02:00",
        description="Time of day (HH:MM, UTC) for the daily full sync"
    )
    enable_incremental_sync: bool = Field(
        default=False,
        description="Run incremental syncs on a fixed interval"
    )
    incremental_sync_interval_hours: int = Field(
        default=6,
        ge=1,
        le=168,
        description="Hours between incremental syncs"
    )
    max_concurrent_updates: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Pending update requests drained per queue pass"
    )
    retry_attempts: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Consecutive retries after failed scheduled syncs"
    )
    retry_delay_seconds: int = Field(
        default=60,
        ge=1,
        le=86400,
        description="Delay before retrying a failed sync"
    )
    pending_update_interval_seconds: int = Field(
        default=300,
        ge=5,
        le=86400,
        description="Interval of the pending-update queue processor (default: 5 minutes)"
    )
    missed_sync_ceiling_hours: int = Field(
        default=48,
        ge=1,
        le=720,
        description="Trigger an immediate full sync on startup when the last one is older"
    )
    error_log_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Entries kept in the scheduler's in-memory error log"
    )

    @field_validator('daily_sync_time')
    @classmethod
    def validate_daily_sync_time(cls, v: str) -> str:
        """Require HH:MM with a valid hour and minute."""
        parts = v.strip().split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"daily_sync_time must be HH:MM, got '{v}'")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError(f"daily_sync_time out of range: '{v}'")
        return f"{hour:02d}:{minute:02d}"

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str

    # Redis Configuration
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_password: str
    redis_url: Optional[str] = None

    # Queue Configuration
    queue_name: str = "catalog-sync-queue"
    dlq_name: str = "catalog-sync-dlq"

    # Database Pool Configuration
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_echo: bool = False

    # Worker Configuration
    max_workers: int = 5
    job_timeout: int = 3600
    log_level: str = "INFO"
    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, **kwargs):
        """Initialize settings and build derived values."""
        super().__init__(**kwargs)
        # Build Redis URL if not provided
        if not self.redis_url:
            self.redis_url = f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/0"


# Global settings instances
settings = Settings()
supplier_settings = SupplierSettings()
sync_settings = SyncSettings()
scheduler_settings = SchedulerSettings()


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Initialize logging on module import (after settings are loaded)
configure_logging(settings.log_level)
