"""Result, state and statistics models for the object cache."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ConnectionState(str, Enum):
    """Connection manager states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    DEGRADED = "degraded"


class GroupKind(str, Enum):
    """How a cache group is treated by the facade."""

    NORMAL = "normal"
    GLOBAL = "global"
    IGNORED = "ignored"


class FailureKind(str, Enum):
    """Why a cache operation did not succeed."""

    IGNORED_GROUP = "ignored_group"
    NOT_CONNECTED = "not_connected"
    VALIDATION_FAILED = "validation_failed"
    NOT_STORED = "not_stored"
    NOT_FOUND = "not_found"
    BACKEND_ERROR = "backend_error"
    DECODING_FAILED = "decoding_failed"


@dataclass(frozen=True)
class CacheResult:
    """Outcome of a single cache operation.

    A result is truthy exactly when the operation succeeded, so call sites
    can keep writing ``if cache.add(...):``. Reads carry the decoded value and
    the out-of-band ``found`` flag; counters carry the new numeric value.
    """

    success: bool
    value: Any = None
    found: bool = False
    failure: Optional[FailureKind] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, value: Any = True, found: bool = False) -> "CacheResult":
        """Builds a successful result."""
        return cls(success=True, value=value, found=found)

    @classmethod
    def fail(cls, failure: FailureKind, error: Optional[str] = None) -> "CacheResult":
        """Builds a failed result; the value of a failed read is always ``False``."""
        return cls(success=False, value=False, found=False, failure=failure, error=error)


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time view of the cache facade.

    Attributes:
        hits: Reads that returned a stored value.
        misses: Reads that found nothing, failed or could not be decoded.
        connected: Whether the backing store is currently reachable.
        state: The connection manager state.
        global_groups: Groups registered as global.
        ignored_groups: Groups registered as ignored.
        last_error: The most recent error message, if any.
        backend_stats: Statistics reported by each memcached server.
    """

    hits: int = 0
    misses: int = 0
    connected: bool = False
    state: ConnectionState = ConnectionState.DISCONNECTED
    global_groups: Tuple[str, ...] = ()
    ignored_groups: Tuple[str, ...] = ()
    last_error: Optional[str] = None
    backend_stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def hit_ratio(self) -> float:
        """Share of reads that were hits, 0.0 when nothing was read yet."""
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Converts the snapshot to a dictionary.

        Returns:
            Dictionary representation of the snapshot.
        """
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": round(self.hit_ratio, 4),
            "connected": self.connected,
            "state": self.state.value,
            "global_groups": list(self.global_groups),
            "ignored_groups": list(self.ignored_groups),
            "last_error": self.last_error,
            "backend_stats": self.backend_stats,
        }
