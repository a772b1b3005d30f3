"""
Service Interfaces for objcache

This module defines the abstract base classes the cache facade depends on:
the memcached client capability contract and the host notification hook.

Usage:
    from objcache.interfaces import ICacheBackend

    def warm(backend: ICacheBackend):
        backend.connect()
"""

from objcache.interfaces.cache_interface import (
    FailureCallback,
    ICacheBackend,
    StoredValue,
)
from objcache.interfaces.notice_interface import INotificationHost, NoticeRenderer

__all__ = [
    "ICacheBackend",
    "StoredValue",
    "FailureCallback",
    "INotificationHost",
    "NoticeRenderer",
]
