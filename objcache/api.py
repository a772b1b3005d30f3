"""
Process-wide ``cache_*`` functions.

Calling code that cannot receive an `ObjectCache` explicitly uses these thin
forwarders instead. `cache_init` builds the facade once at startup and
installs it; every other function forwards to whatever is installed. Until
`cache_init` runs, or when the backend is configured as ``none``, a
`NullObjectCache` answers every call with a failure.

Groups registered at runtime belong to the process, not to one facade: they
are kept in a module-level `GroupPolicy` handed to every installed cache, so
re-initializing or closing the cache never forgets them.
"""

from typing import Any, Dict, Iterable, Optional, Tuple, Union

from objcache.core.config import Settings, get_settings
from objcache.core.logging import get_logger, setup_structured_logging
from objcache.interfaces import ICacheBackend, INotificationHost
from objcache.models import CacheResult, StatsSnapshot
from objcache.monitoring.prometheus import CacheMetrics
from objcache.services.key_builder import DEFAULT_GROUP, GroupPolicy, GroupSpec
from objcache.services.object_cache import NullObjectCache, ObjectCache

logger = get_logger(__name__)

_cache: Optional[Union[ObjectCache, NullObjectCache]] = None
_policy = GroupPolicy()
_metrics: Optional[CacheMetrics] = None


def cache_init(
    settings: Optional[Settings] = None,
    host: Optional[INotificationHost] = None,
    backend: Optional[ICacheBackend] = None,
) -> Union[ObjectCache, NullObjectCache]:
    """Builds, connects and installs the process-wide cache.

    A previously installed cache is closed first. When the configured
    backend is ``none``, a `NullObjectCache` is installed instead and a
    one-time "object caching is disabled" notice is raised.

    Args:
        settings: Settings to use; defaults to the process settings.
        host: Notification host for admin notices.
        backend: Backend adapter overriding the configured one.

    Returns:
        The installed cache.
    """
    global _cache, _metrics
    settings = settings or get_settings()
    setup_structured_logging(settings)
    _metrics = CacheMetrics(cache_ttl=settings.monitoring.metrics_cache_ttl)
    if _cache is not None:
        _cache.close()

    config = settings.cache
    if config.backend == "none" and backend is None:
        logger.info("Object cache disabled by configuration")
        _cache = NullObjectCache(
            "Object caching is disabled: no memcached backend is configured.",
            notification_host=host,
            screens=config.notice_screens,
            ignore_failures=config.ignore_failures,
            policy=_policy,
        )
        return _cache

    _cache = ObjectCache(settings, backend=backend, notification_host=host, policy=_policy)
    _cache.connect()
    return _cache


def get_cache() -> Union[ObjectCache, NullObjectCache]:
    """Returns the installed cache, installing a `NullObjectCache` if none is."""
    global _cache
    if _cache is None:
        _cache = NullObjectCache(
            "Object caching is disabled: the cache was not initialized.", policy=_policy
        )
    return _cache


def cache_add(key: str, value: Any, group: GroupSpec = DEFAULT_GROUP, expire: Optional[int] = None) -> CacheResult:
    return get_cache().add(key, value, group, expire)


def cache_set(key: str, value: Any, group: GroupSpec = DEFAULT_GROUP, expire: Optional[int] = None) -> CacheResult:
    return get_cache().set(key, value, group, expire)


def cache_replace(
    key: str, value: Any, group: GroupSpec = DEFAULT_GROUP, expire: Optional[int] = None
) -> CacheResult:
    return get_cache().replace(key, value, group, expire)


def cache_get(key: str, group: GroupSpec = DEFAULT_GROUP, force: bool = False) -> CacheResult:
    """Reads a value; ``result.found`` tells a stored falsy value from a miss."""
    return get_cache().get(key, group, force)


def cache_get_multiple(keys: Iterable[str], group: GroupSpec = DEFAULT_GROUP) -> Dict[Any, CacheResult]:
    return get_cache().get_multiple(keys, group)


def cache_delete(key: str, group: GroupSpec = DEFAULT_GROUP) -> CacheResult:
    return get_cache().delete(key, group)


def cache_increment(key: str, offset: int = 1, group: GroupSpec = DEFAULT_GROUP) -> CacheResult:
    return get_cache().incr(key, offset, group)


def cache_decrement(key: str, offset: int = 1, group: GroupSpec = DEFAULT_GROUP) -> CacheResult:
    return get_cache().decr(key, offset, group)


def cache_flush() -> CacheResult:
    return get_cache().flush()


def cache_add_global_groups(groups: Union[str, Iterable[str]]) -> None:
    get_cache().add_global_groups(groups)


def cache_add_non_persistent_groups(groups: Union[str, Iterable[str]]) -> None:
    get_cache().add_non_persistent_groups(groups)


def cache_stats() -> StatsSnapshot:
    return get_cache().stats()


def cache_close() -> CacheResult:
    """Closes the installed cache and uninstalls it."""
    global _cache
    if _cache is None:
        return CacheResult.ok()
    result = _cache.close()
    _cache = None
    return result


def cache_metrics() -> Tuple[bytes, str]:
    """Returns the Prometheus exposition payload and its content type.

    The payload is rendered at most once per ``metrics_cache_ttl`` seconds.
    """
    global _metrics
    if _metrics is None:
        _metrics = CacheMetrics(cache_ttl=get_settings().monitoring.metrics_cache_ttl)
    return _metrics.get_metrics(), CacheMetrics.get_metrics_content_type()
