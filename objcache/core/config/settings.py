"""
Root Settings class composing the domain-specific configurations.

This module provides the main Settings class that brings together the cache
and monitoring configuration into a single settings object.
"""

from typing import Any, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from objcache.core.config.cache import CacheConfig
from objcache.core.config.monitoring import MonitoringConfig
from objcache.utils.exceptions import SettingsValidationError


class Settings(BaseSettings):
    """Main settings class composing all domain-specific configurations.

    All settings are accessed through their domain-specific structure
    (e.g., settings.cache.host, settings.monitoring.log_level).

    Attributes:
        cache: Memcached connection, retry and key namespacing configuration.
        monitoring: Metrics and logging configuration.
    """

    cache: CacheConfig = Field(default_factory=CacheConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @model_validator(mode="before")
    @classmethod
    def map_flat_fields(cls, values: Any) -> Any:
        """Map flat keyword arguments to nested domain configurations.

        This lets callers and tests write ``Settings(host="10.0.0.5",
        max_retries=0)`` instead of building the nested configs by hand.
        """
        if not isinstance(values, dict):
            return values

        flat_map = {field: ("monitoring", field) for field in MonitoringConfig.model_fields}
        for field in CacheConfig.model_fields:
            flat_map.setdefault(field, ("cache", field))

        for flat_key, (domain, field) in flat_map.items():
            if flat_key in values:
                value = values.pop(flat_key)
                if domain not in values:
                    values[domain] = {}
                if isinstance(values[domain], dict):
                    values[domain][field] = value

        return values

    def _validate_primary_host_allowed(self) -> None:
        """Ensures the allow-list is not empty.

        An empty allow-list would reject every host, which is always a
        configuration mistake rather than an intent to disable caching
        (use ``backend="none"`` for that).

        Raises:
            SettingsValidationError: If allowed_hosts is empty.
        """
        if not self.cache.allowed_hosts and self.cache.backend != "none":
            raise SettingsValidationError(
                "allowed_hosts cannot be empty; set backend='none' to disable caching"
            )

    def _validate_retry_budget(self) -> None:
        """Keeps the worst-case retry stall of one failure under ten seconds.

        Raises:
            SettingsValidationError: If max_retries * retry_delay_ms exceeds 10s.
        """
        stall_ms = self.cache.max_retries * self.cache.retry_delay_ms
        if stall_ms > 10_000:
            raise SettingsValidationError(
                f"Retry configuration may block callers for ~{stall_ms}ms. "
                "Reduce max_retries or retry_delay_ms."
            )

    @model_validator(mode="after")
    def validate_configuration_consistency(self):
        """Performs cross-field validation to ensure configuration consistency.

        Returns:
            The validated Settings instance.
        """
        self._validate_primary_host_allowed()
        self._validate_retry_budget()
        return self

    @property
    def effective_log_level(self) -> str:
        """Log level after applying the cache debug flag."""
        return "DEBUG" if self.cache.debug else self.monitoring.log_level

    class Config:
        """Pydantic configuration options for the Settings class."""

        env_prefix = "OBJCACHE_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Provides the process-wide settings instance.

    Settings are loaded on first use and are immutable afterwards.

    Returns:
        The singleton instance of the application settings.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
