"""
Monitoring and observability components.

This module contains the Prometheus metrics describing cache traffic and
connection health.
"""

from objcache.monitoring.prometheus import CacheMetrics

__all__ = ["CacheMetrics"]
