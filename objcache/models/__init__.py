"""
Data models shared by the cache services.

Results, connection states and statistics snapshots are plain frozen
dataclasses and enums so they can be compared and logged directly.
"""

from objcache.models.cache_models import (
    CacheResult,
    ConnectionState,
    FailureKind,
    GroupKind,
    StatsSnapshot,
)

__all__ = ["CacheResult", "ConnectionState", "FailureKind", "GroupKind", "StatsSnapshot"]
