"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from lobster.types.common import RetryPolicy


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Durable state
    queue_base_path: Path = Path(".lobster/queues")
    session_store_path: Path = Path(".lobster/sessions.json")
    session_persist_mode: Literal["write_through", "debounced"] = "write_through"
    session_save_debounce_seconds: float = 1.0

    # Kernel
    max_queue_depth: int = 50
    shutdown_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 1.0
    drain_poll_interval_seconds: float = 0.5

    # Reaper
    requeue_orphans_on_startup: bool = True
    reaper_interval_seconds: int = 3600
    done_retention_days: int = 7

    # Rate limiting and validation
    rate_limit_per_minute: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_cleanup_interval_seconds: float = 60.0
    max_message_length: int = 10000

    # Retry policy for remote calls
    retry_max_attempts: int = 3
    retry_initial_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    retry_backoff_multiplier: float = 2.0

    # Collaborators selected at bootstrap
    input_adapter: str = "http"
    output_adapter: str = "http"
    agent_adapter: str = "opencode"

    # Opencode agent
    opencode_base_url: str = "http://localhost:4096"
    opencode_provider_id: str | None = None
    opencode_model_id: str | None = None
    opencode_timeout_seconds: float = 300.0

    # HTTP channel
    input_host: str = "0.0.0.0"
    input_port: int = 8080
    output_webhook_url: str | None = None

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "lobster"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy used around remote agent calls."""
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
            backoff_multiplier=self.retry_backoff_multiplier,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
