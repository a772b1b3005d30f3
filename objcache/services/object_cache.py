"""
The object cache facade.

`ObjectCache` is the only object calling code talks to. Every keyed operation
follows the same skeleton: ignored groups are answered locally, the
connection is (re)established lazily, the wire key is built and validated,
values are encoded, the backend is called, and reads are decoded and counted
as hits or misses.

Cache failures never propagate: they come back as a failed `CacheResult`,
a log line and the ``last_error`` value. The single exception is
`EncodingRejectedError`, which signals an attempt to cache a value that can
never be stored.
"""

import threading
import time
from typing import Any, Dict, Iterable, Optional, Union

from objcache.core.config import Settings, get_settings
from objcache.core.logging import get_logger, log_cache_operation
from objcache.interfaces import ICacheBackend, INotificationHost
from objcache.models import CacheResult, FailureKind, GroupKind, StatsSnapshot
from objcache.monitoring.prometheus import record_cache_error, record_cache_hit, record_cache_miss
from objcache.services.admin_notice import DegradedModeNotice, NoticeBoard
from objcache.services.connection_manager import ConnectionManager
from objcache.services.key_builder import DEFAULT_GROUP, GroupPolicy, GroupSpec, KeyBuilder
from objcache.services.serialization import ValueCodec
from objcache.utils.error_codes import ErrorCode
from objcache.utils.exceptions import (
    CacheError,
    DecodingError,
    EncodingRejectedError,
    ValidationError,
)

logger = get_logger(__name__)

Expiration = Union[int, float, str, None]


class ObjectCache:
    """Namespaced object cache backed by memcached.

    Attributes:
        settings: The settings the facade was built from.
        policy: Global and ignored group registry.
        keys: Wire key builder.
        codec: Value encoder/decoder.
        connection: Connection manager owning the backend.
        notice: Degraded-mode notice raised on connection failures.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend: Optional[ICacheBackend] = None,
        notification_host: Optional[INotificationHost] = None,
        sleep=time.sleep,
        policy: Optional[GroupPolicy] = None,
    ):
        """Initializes the facade without contacting the server.

        Args:
            settings: Settings to use; defaults to the process settings.
            backend: Backend adapter; built from the configuration when omitted.
            notification_host: Host receiving the degraded-mode notice.
            sleep: Sleep function used between reconnect attempts.
            policy: Group registry shared with earlier facades; the configured
                groups are appended to it.
        """
        self.settings = settings or get_settings()
        config = self.settings.cache
        self.config = config

        self.notification_host = notification_host or NoticeBoard()
        self.notice = DegradedModeNotice(
            self.notification_host,
            screens=config.notice_screens,
            ignore_failures=config.ignore_failures,
        )
        self.policy = policy or GroupPolicy()
        self.policy.add_global_groups(config.global_groups)
        self.policy.add_ignored_groups(config.ignored_groups)
        self.keys = KeyBuilder(config.key_prefix, self.policy)
        self.codec = ValueCodec(compress_threshold=config.compress_threshold)
        self.connection = ConnectionManager(config, backend=backend, notice=self.notice, sleep=sleep)

        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._last_error: Optional[str] = None

    # --- Observability ---

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def _count_read(self, hit: bool, kind: GroupKind) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1
        if hit:
            record_cache_hit(kind.value)
        else:
            record_cache_miss(kind.value)

    def _set_last_error(self, message: Optional[str]) -> None:
        if message:
            with self._lock:
                self._last_error = message

    def _failed(
        self,
        operation: str,
        failure: FailureKind,
        error: Optional[CacheError] = None,
        wire_key: Optional[str] = None,
    ) -> CacheResult:
        """Records a failed operation and builds its result."""
        message = error.message if error is not None else None
        self._set_last_error(message)
        # Backend errors are counted by the adapter that raised them.
        if error is not None and failure != FailureKind.BACKEND_ERROR:
            record_cache_error(operation, type(error).__name__)
        log_cache_operation(logger, operation, wire_key, success=False, error=message)
        return CacheResult.fail(failure, message)

    # --- Pre-checks ---

    def connect(self) -> bool:
        """Connects eagerly; operations otherwise connect on first use.

        Returns:
            True if the backing store is connected.
        """
        return self._ensure_connected("connect")

    def _ensure_connected(self, operation: str) -> bool:
        if self.connection.ensure_connection():
            return True
        self._set_last_error(self.connection.last_error)
        logger.debug("Cache operation skipped, not connected", operation=operation)
        return False

    def _resolve_expire(self, expire: Expiration) -> int:
        if expire is None:
            return self.config.default_expire
        try:
            return int(expire)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Expiration must be a number of seconds, got {expire!r}",
                code=ErrorCode.INVALID_EXPIRATION,
            ) from None

    @staticmethod
    def _resolve_offset(offset: Any) -> int:
        try:
            return int(offset)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Offset must be an integer, got {offset!r}",
                code=ErrorCode.INVALID_OFFSET,
            ) from None

    def _ignored(self, operation: str, group: str) -> CacheResult:
        logger.debug("Cache operation skipped for ignored group", operation=operation, group=group)
        return CacheResult.fail(FailureKind.IGNORED_GROUP)

    # --- Writes ---

    def _store(
        self,
        operation: str,
        key: str,
        value: Any,
        group: GroupSpec,
        expire: Expiration,
    ) -> CacheResult:
        resolved = self.keys.resolve_group(group)
        if self.policy.is_ignored(resolved):
            return self._ignored(operation, resolved)
        if not self._ensure_connected(operation):
            return CacheResult.fail(FailureKind.NOT_CONNECTED, self._last_error)

        try:
            wire_key = self.keys.build(key, group)
            ttl = self._resolve_expire(expire)
        except ValidationError as e:
            return self._failed(operation, FailureKind.VALIDATION_FAILED, e)

        try:
            stored = self.codec.encode(value)
        except EncodingRejectedError as e:
            self._set_last_error(e.message)
            record_cache_error(operation, type(e).__name__)
            logger.warning(
                "Refusing to cache an unserializable value",
                operation=operation,
                wire_key=wire_key,
                value_type=e.value_type,
            )
            raise

        start_time = time.perf_counter()
        try:
            written = getattr(self.connection.backend, operation)(wire_key, stored, ttl)
        except CacheError as e:
            return self._failed(operation, FailureKind.BACKEND_ERROR, e, wire_key)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if not written:
            log_cache_operation(logger, operation, wire_key, success=False, duration_ms=duration_ms)
            return CacheResult.fail(FailureKind.NOT_STORED)
        log_cache_operation(logger, operation, wire_key, success=True, duration_ms=duration_ms)
        return CacheResult.ok()

    def add(self, key: str, value: Any, group: GroupSpec = DEFAULT_GROUP, expire: Expiration = None) -> CacheResult:
        """Stores a value only if the key does not exist yet.

        Args:
            key: The cache key.
            value: The value to store.
            group: The cache group.
            expire: TTL in seconds; None uses ``default_expire``.

        Returns:
            A successful result if stored, ``not_stored`` if the key exists.

        Raises:
            EncodingRejectedError: If the value cannot be cached.
        """
        return self._store("add", key, value, group, expire)

    def set(self, key: str, value: Any, group: GroupSpec = DEFAULT_GROUP, expire: Expiration = None) -> CacheResult:
        """Stores a value unconditionally.

        Raises:
            EncodingRejectedError: If the value cannot be cached.
        """
        return self._store("set", key, value, group, expire)

    def replace(
        self, key: str, value: Any, group: GroupSpec = DEFAULT_GROUP, expire: Expiration = None
    ) -> CacheResult:
        """Stores a value only if the key already exists.

        Raises:
            EncodingRejectedError: If the value cannot be cached.
        """
        return self._store("replace", key, value, group, expire)

    # --- Reads ---

    def get(self, key: str, group: GroupSpec = DEFAULT_GROUP, force: bool = False) -> CacheResult:
        """Reads a value.

        Every call counts exactly one hit or one miss.

        Args:
            key: The cache key.
            group: The cache group.
            force: Accepted for call-site compatibility. There is no local
                copy to bypass, so every read already goes to the server.

        Returns:
            A result carrying the value and ``found=True`` on a hit; a failed
            result with ``value=False`` and ``found=False`` otherwise.
        """
        resolved = self.keys.resolve_group(group)
        kind = self.policy.classify(resolved)
        if kind == GroupKind.IGNORED:
            self._count_read(False, kind)
            return self._ignored("get", resolved)
        if not self._ensure_connected("get"):
            self._count_read(False, kind)
            return CacheResult.fail(FailureKind.NOT_CONNECTED, self._last_error)

        try:
            wire_key = self.keys.build(key, group)
        except ValidationError as e:
            self._count_read(False, kind)
            return self._failed("get", FailureKind.VALIDATION_FAILED, e)

        start_time = time.perf_counter()
        try:
            stored = self.connection.backend.get(wire_key)
        except CacheError as e:
            self._count_read(False, kind)
            return self._failed("get", FailureKind.BACKEND_ERROR, e, wire_key)
        duration_ms = (time.perf_counter() - start_time) * 1000

        if stored is None:
            self._count_read(False, kind)
            log_cache_operation(logger, "get", wire_key, success=False, duration_ms=duration_ms)
            return CacheResult.fail(FailureKind.NOT_FOUND)

        try:
            value = self.codec.decode(stored)
        except DecodingError as e:
            self._count_read(False, kind)
            return self._failed("get", FailureKind.DECODING_FAILED, e, wire_key)

        self._count_read(True, kind)
        log_cache_operation(logger, "get", wire_key, success=True, duration_ms=duration_ms)
        return CacheResult.ok(value, found=True)

    def get_multiple(self, keys: Iterable[str], group: GroupSpec = DEFAULT_GROUP) -> Dict[Any, CacheResult]:
        """Reads several keys of one group in a single round trip.

        Args:
            keys: The cache keys.
            group: The cache group shared by all keys.

        Returns:
            A result per requested key, as `get` would have returned it.
        """
        keys = list(keys)
        resolved = self.keys.resolve_group(group)
        kind = self.policy.classify(resolved)
        if kind == GroupKind.IGNORED:
            for _ in keys:
                self._count_read(False, kind)
            self._ignored("get_multiple", resolved)
            return {key: CacheResult.fail(FailureKind.IGNORED_GROUP) for key in keys}
        if not self._ensure_connected("get_multiple"):
            for _ in keys:
                self._count_read(False, kind)
            return {key: CacheResult.fail(FailureKind.NOT_CONNECTED, self._last_error) for key in keys}

        results: Dict[Any, CacheResult] = {}
        wire_keys: Dict[Any, str] = {}
        for key in keys:
            try:
                wire_keys[key] = self.keys.build(key, group)
            except ValidationError as e:
                self._count_read(False, kind)
                results[key] = self._failed("get_multiple", FailureKind.VALIDATION_FAILED, e)

        if not wire_keys:
            return results

        try:
            found = self.connection.backend.get_many(list(dict.fromkeys(wire_keys.values())))
        except CacheError as e:
            failed = self._failed("get_multiple", FailureKind.BACKEND_ERROR, e)
            for key in wire_keys:
                self._count_read(False, kind)
                results[key] = failed
            return results

        for key, wire_key in wire_keys.items():
            stored = found.get(wire_key)
            if stored is None:
                self._count_read(False, kind)
                results[key] = CacheResult.fail(FailureKind.NOT_FOUND)
                continue
            try:
                value = self.codec.decode(stored)
            except DecodingError as e:
                self._count_read(False, kind)
                results[key] = self._failed("get_multiple", FailureKind.DECODING_FAILED, e, wire_key)
                continue
            self._count_read(True, kind)
            results[key] = CacheResult.ok(value, found=True)

        logger.debug("Cache multi-get completed", requested=len(keys), found=len(found))
        return results

    # --- Deletes and counters ---

    def delete(self, key: str, group: GroupSpec = DEFAULT_GROUP) -> CacheResult:
        """Removes a key.

        Returns:
            A successful result if the key existed, ``not_found`` otherwise.
        """
        resolved = self.keys.resolve_group(group)
        if self.policy.is_ignored(resolved):
            return self._ignored("delete", resolved)
        if not self._ensure_connected("delete"):
            return CacheResult.fail(FailureKind.NOT_CONNECTED, self._last_error)

        try:
            wire_key = self.keys.build(key, group)
        except ValidationError as e:
            return self._failed("delete", FailureKind.VALIDATION_FAILED, e)

        try:
            deleted = self.connection.backend.delete(wire_key)
        except CacheError as e:
            return self._failed("delete", FailureKind.BACKEND_ERROR, e, wire_key)

        log_cache_operation(logger, "delete", wire_key, success=deleted)
        return CacheResult.ok() if deleted else CacheResult.fail(FailureKind.NOT_FOUND)

    def _counter(self, operation: str, key: str, offset: Any, group: GroupSpec) -> CacheResult:
        resolved = self.keys.resolve_group(group)
        if self.policy.is_ignored(resolved):
            return self._ignored(operation, resolved)
        if not self._ensure_connected(operation):
            return CacheResult.fail(FailureKind.NOT_CONNECTED, self._last_error)

        try:
            wire_key = self.keys.build(key, group)
            offset = self._resolve_offset(offset)
        except ValidationError as e:
            return self._failed(operation, FailureKind.VALIDATION_FAILED, e)

        # memcached only accepts non-negative deltas.
        if offset < 0:
            operation = "decr" if operation == "incr" else "incr"
            offset = -offset

        try:
            value = getattr(self.connection.backend, operation)(wire_key, offset)
        except CacheError as e:
            return self._failed(operation, FailureKind.BACKEND_ERROR, e, wire_key)

        if value is None:
            log_cache_operation(logger, operation, wire_key, success=False)
            return CacheResult.fail(FailureKind.NOT_FOUND)
        log_cache_operation(logger, operation, wire_key, success=True)
        return CacheResult.ok(int(value), found=True)

    def incr(self, key: str, offset: int = 1, group: GroupSpec = DEFAULT_GROUP) -> CacheResult:
        """Atomically increments a numeric value.

        A negative offset decrements. The key must already exist.

        Returns:
            A result carrying the new value, or ``not_found``.
        """
        return self._counter("incr", key, offset, group)

    def decr(self, key: str, offset: int = 1, group: GroupSpec = DEFAULT_GROUP) -> CacheResult:
        """Atomically decrements a numeric value.

        memcached never lets a counter go below zero.
        """
        return self._counter("decr", key, offset, group)

    def flush(self) -> CacheResult:
        """Invalidates every entry on the backing store.

        This is not limited to this instance's prefix: every installation
        sharing the server loses its entries.
        """
        if not self._ensure_connected("flush"):
            return CacheResult.fail(FailureKind.NOT_CONNECTED, self._last_error)
        try:
            self.connection.backend.flush()
        except CacheError as e:
            return self._failed("flush", FailureKind.BACKEND_ERROR, e)
        logger.info("Object cache flushed", server=f"{self.config.host}:{self.config.port}")
        return CacheResult.ok()

    # --- Groups ---

    def add_global_groups(self, groups: Union[str, Iterable[str]]) -> None:
        """Registers groups shared by every installation (no instance prefix)."""
        self.policy.add_global_groups(groups)

    def add_non_persistent_groups(self, groups: Union[str, Iterable[str]]) -> None:
        """Registers groups that are never sent to the backing store."""
        self.policy.add_ignored_groups(groups)

    # --- Lifecycle ---

    def stats(self) -> StatsSnapshot:
        """Returns a snapshot of counters, groups, connection and server stats."""
        backend_stats: Dict[str, Dict[str, Any]] = {}
        if self._ensure_connected("stats"):
            try:
                backend_stats = self.connection.backend.stats()
            except CacheError as e:
                self._failed("stats", FailureKind.BACKEND_ERROR, e)

        with self._lock:
            hits, misses, last_error = self._hits, self._misses, self._last_error
        return StatsSnapshot(
            hits=hits,
            misses=misses,
            connected=self.connection.is_connected,
            state=self.connection.state,
            global_groups=self.policy.global_groups,
            ignored_groups=self.policy.ignored_groups,
            last_error=last_error,
            backend_stats=backend_stats,
        )

    def close(self) -> CacheResult:
        """Releases the connection; always succeeds when nothing is open."""
        if self.connection.close():
            return CacheResult.ok()
        return CacheResult.fail(FailureKind.BACKEND_ERROR, self.connection.last_error)


class NullObjectCache:
    """Stand-in used when no memcached client is available at all.

    Every operation fails, reads count as misses, and a one-time "object
    caching is disabled" notice is raised when the stand-in is created.
    Calling code must never assume caching succeeded.
    """

    def __init__(
        self,
        reason: str = "Object caching is disabled",
        notification_host: Optional[INotificationHost] = None,
        screens: Iterable[str] = ("dashboard", "plugins"),
        ignore_failures: bool = False,
        policy: Optional[GroupPolicy] = None,
    ):
        self.reason = reason
        self.policy = policy or GroupPolicy()
        self.notification_host = notification_host or NoticeBoard()
        self.notice = DegradedModeNotice(
            self.notification_host, screens=screens, ignore_failures=ignore_failures
        )
        self._lock = threading.Lock()
        self._misses = 0
        self.notice.raise_notice(reason)

    def _disabled(self) -> CacheResult:
        return CacheResult.fail(FailureKind.NOT_CONNECTED, self.reason)

    def connect(self) -> bool:
        return False

    def add(self, key, value, group=DEFAULT_GROUP, expire=None) -> CacheResult:
        return self._disabled()

    def set(self, key, value, group=DEFAULT_GROUP, expire=None) -> CacheResult:
        return self._disabled()

    def replace(self, key, value, group=DEFAULT_GROUP, expire=None) -> CacheResult:
        return self._disabled()

    def get(self, key, group=DEFAULT_GROUP, force=False) -> CacheResult:
        with self._lock:
            self._misses += 1
        return self._disabled()

    def get_multiple(self, keys, group=DEFAULT_GROUP) -> Dict[Any, CacheResult]:
        keys = list(keys)
        with self._lock:
            self._misses += len(keys)
        return {key: self._disabled() for key in keys}

    def delete(self, key, group=DEFAULT_GROUP) -> CacheResult:
        return self._disabled()

    def incr(self, key, offset=1, group=DEFAULT_GROUP) -> CacheResult:
        return self._disabled()

    def decr(self, key, offset=1, group=DEFAULT_GROUP) -> CacheResult:
        return self._disabled()

    def flush(self) -> CacheResult:
        return self._disabled()

    def add_global_groups(self, groups) -> None:
        self.policy.add_global_groups(groups)

    def add_non_persistent_groups(self, groups) -> None:
        self.policy.add_ignored_groups(groups)

    def stats(self) -> StatsSnapshot:
        with self._lock:
            misses = self._misses
        return StatsSnapshot(
            misses=misses,
            global_groups=self.policy.global_groups,
            ignored_groups=self.policy.ignored_groups,
            last_error=self.reason,
        )

    def close(self) -> CacheResult:
        return CacheResult.ok()
