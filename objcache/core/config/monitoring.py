"""Monitoring and logging configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings


class MonitoringConfig(BaseSettings):
    """Metrics and logging configuration.

    Attributes:
        enable_metrics: Record Prometheus metrics for cache operations.
        log_level: Logging level.
        metrics_cache_ttl: Seconds to cache generated Prometheus metrics.
        log_json: Render log lines as JSON instead of console key/value text.
        service_name: Service name attached to every log entry.
    """

    enable_metrics: bool = Field(
        default=True,
        description="Enable metrics collection",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )
    metrics_cache_ttl: int = Field(
        default=5,
        description="Seconds to cache generated Prometheus metrics",
        ge=1,
        le=300,
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON",
    )
    service_name: str = Field(
        default="objcache",
        description="Service name attached to log entries",
    )

    class Config:
        """Pydantic configuration."""

        env_prefix = "OBJCACHE_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
