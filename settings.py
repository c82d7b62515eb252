"""
Configuration and logging bootstrap for branch-sync.

All tunables live on one pydantic-settings class so they can be overridden
through environment variables or a local .env file.
"""

import logging
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"


class Settings(BaseSettings):
    """Centralized configuration using Pydantic BaseSettings."""

    # Backend
    api_base_url: str = "http://localhost:5000/api"
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 1.0  # wait grows by this much per retry (seconds)

    # Cache
    cache_ttl: float = 300.0  # 5 minutes
    cache_max_bytes: int = 50 * 1024 * 1024
    cache_sweep_interval: float = 120.0
    cleanup_threshold: float = 0.8
    cleanup_fraction: float = 0.3

    # Monitoring
    metrics_capacity: int = 1000
    metrics_window: int = 100
    monitor_interval: float = 60.0

    # Batching
    debounce_seconds: float = 0.3
    max_concurrency: int = 8

    # Orchestration
    optimization_interval: float = 300.0
    predictive_interval: float = 30.0
    emergency_cooldown: float = 5.0
    deferred_sync_delay: float = 0.1
    paged_preload_pages: int = 1

    # Server
    port: int = 8100
    env: str = "development"
    log_level: str = "INFO"
    allowed_origins: str = "*"
    rate_limit_sync: str = "30/minute"
    admin_api_key: Optional[str] = None  # guards cache-clearing endpoints when set

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @property
    def is_development(self) -> bool:
        return self.env.lower() in ("development", "dev", "local")

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated origins."""
        if self.allowed_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",")]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


settings = Settings()
