"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.

Queue behaviour that operators change at runtime (backoff base, default
retry budget) lives in the ``config`` table instead, see
``queuectl.db.repository.ConfigRepository``.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from queuectl.constants import DEFAULT_BACKOFF_BASE, DEFAULT_MAX_RETRIES


class Settings(BaseSettings):
    """Application settings loaded from ``QUEUECTL_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUEUECTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///queuectl.db"
    database_busy_timeout_seconds: float = 30.0
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Worker Configuration
    worker_id: str | None = None
    worker_poll_interval_seconds: float = 1.0
    worker_storage_retry_limit: int = 10
    worker_pidfile: str = "queuectl_workers.pid"
    worker_stop_grace_seconds: float = 0.5

    # Executor
    executor_output_limit: int = 1000

    # Seeds for the config table
    default_backoff_base: float = DEFAULT_BACKOFF_BASE
    default_max_retries: int = DEFAULT_MAX_RETRIES

    # Observability
    metrics_port: int = 0
    otel_service_name: str = "queuectl"
    otel_exporter_otlp_endpoint: str | None = None
    otel_console_export: bool = False
    log_level: str = "INFO"
    log_format: str = "console"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
