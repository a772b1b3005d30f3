"""
Configuration management package for objcache.

This package provides domain-specific configuration classes that are composed
into a root Settings class. Cache settings read ``WP_CACHE_*`` environment
variables; monitoring settings read ``OBJCACHE_*``.
"""

from objcache.core.config.cache import CacheConfig, fingerprint_install_path
from objcache.core.config.monitoring import MonitoringConfig
from objcache.core.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "CacheConfig",
    "MonitoringConfig",
    "fingerprint_install_path",
]
