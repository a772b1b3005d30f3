"""
Prometheus metrics for the object cache.

This module defines the Prometheus counters, gauges and histograms that
describe cache traffic and connection health, plus small helper functions
used by the services to update them. Metrics are process-wide, like the
default Prometheus registry they live in.
"""

import time
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

from objcache.core.config import get_settings

# --- Prometheus Metric Definitions ---

CACHE_HITS = Counter(
    "objcache_hits_total",
    "Number of cache reads that returned a stored value",
    ["group_kind"],
)
CACHE_MISSES = Counter(
    "objcache_misses_total",
    "Number of cache reads that returned nothing",
    ["group_kind"],
)
CACHE_ERRORS = Counter(
    "objcache_errors_total",
    "Number of failed cache operations",
    ["operation", "error_type"],
)
OPERATION_DURATION = Histogram(
    "objcache_operation_duration_seconds",
    "Round-trip duration of memcached commands",
    ["operation"],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)
CONNECTED = Gauge(
    "objcache_connected",
    "Indicates if the backing store is connected (1) or not (0)",
)
RECONNECT_ATTEMPTS = Counter(
    "objcache_reconnect_attempts_total",
    "Number of reconnect attempts made by the failure callback",
)


class CacheMetrics:
    """Serves the collected metrics in the Prometheus text format.

    The payload is cached for ``cache_ttl`` seconds so a
    tight scrape interval does not re-render the registry every time.
    """

    def __init__(self, cache_ttl: float = 5.0):
        self.cache_ttl = cache_ttl
        self._metrics_cache: Optional[bytes] = None
        self._metrics_cache_ts: Optional[float] = None

    def get_metrics(self) -> bytes:
        """Generates and returns the metrics in Prometheus text format.

        Returns:
            A byte string containing the metrics in Prometheus format.
        """
        now = time.time()
        if (
            self._metrics_cache
            and self._metrics_cache_ts
            and (now - self._metrics_cache_ts) < self.cache_ttl
        ):
            return self._metrics_cache

        payload = generate_latest()
        self._metrics_cache = payload
        self._metrics_cache_ts = now
        return payload

    @staticmethod
    def get_metrics_content_type() -> str:
        """Returns the content type for Prometheus metrics."""
        return CONTENT_TYPE_LATEST


def _enabled() -> bool:
    return get_settings().monitoring.enable_metrics


def record_cache_hit(group_kind: str):
    """Increments the hit counter."""
    if _enabled():
        CACHE_HITS.labels(group_kind=group_kind).inc()


def record_cache_miss(group_kind: str):
    """Increments the miss counter."""
    if _enabled():
        CACHE_MISSES.labels(group_kind=group_kind).inc()


def record_cache_error(operation: str, error_type: str):
    """Increments the error counter for an operation."""
    if _enabled():
        CACHE_ERRORS.labels(operation=operation, error_type=error_type).inc()


def record_operation_duration(operation: str, duration: float):
    """Records the duration of a memcached command."""
    if _enabled():
        OPERATION_DURATION.labels(operation=operation).observe(duration)


def set_connection_status(is_connected: bool):
    """Sets the gauge for the connection status."""
    CONNECTED.set(1 if is_connected else 0)


def record_reconnect_attempt():
    """Increments the reconnect attempt counter."""
    if _enabled():
        RECONNECT_ATTEMPTS.inc()
