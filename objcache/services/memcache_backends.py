"""
Memcached client adapters.

Each adapter wraps one pymemcache client class behind the `ICacheBackend`
contract: a single-server `Client` for the common case and a `HashClient`
that spreads keys over several servers with rendezvous hashing. The adapter
is picked from ``CacheConfig.backend``; there is no runtime probing for
installed libraries.

Adapters never decode values. Payloads and flags travel through a
pass-through serde so that the facade's `ValueCodec` sees exactly what the
server stored.
"""

import time
from contextlib import contextmanager
from importlib import metadata
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymemcache.client.base import Client
from pymemcache.client.hash import HashClient
from pymemcache.exceptions import (
    MemcacheClientError,
    MemcacheError,
    MemcacheIllegalInputError,
    MemcacheServerError,
    MemcacheUnknownCommandError,
)

from objcache.core.config import CacheConfig
from objcache.core.logging import get_logger
from objcache.interfaces import FailureCallback, ICacheBackend, StoredValue
from objcache.monitoring.prometheus import record_cache_error, record_operation_duration
from objcache.utils.exceptions import BackendOperationError, TransientServerError

logger = get_logger(__name__)

# The server answered and refused the command; the connection is fine.
_OPERATION_ERRORS = (
    MemcacheClientError,
    MemcacheIllegalInputError,
    MemcacheServerError,
    MemcacheUnknownCommandError,
)
# The server could not be reached or dropped the connection.
_TRANSIENT_ERRORS = (OSError, MemcacheError)


class PassthroughSerde:
    """pymemcache serde that moves `StoredValue` pairs in and out unchanged."""

    def serialize(self, key, value: StoredValue) -> Tuple[bytes, int]:
        return value.payload, value.flags

    def deserialize(self, key, value: bytes, flags: int) -> StoredValue:
        return StoredValue(value, flags)


def parse_version(version: str) -> Tuple[int, ...]:
    """Turns ``"4.0.0rc1"`` into ``(4, 0, 0)``; non-numeric tails are ignored."""
    parts = []
    for piece in version.split("."):
        digits = ""
        for char in piece:
            if not char.isdigit():
                break
            digits += char
        if not digits:
            break
        parts.append(int(digits))
    return tuple(parts)


def _normalize_stats(raw: Dict[Any, Any]) -> Dict[str, Any]:
    stats = {}
    for key, value in raw.items():
        if isinstance(key, bytes):
            key = key.decode("ascii", "replace")
        if isinstance(value, bytes):
            value = value.decode("ascii", "replace")
        stats[key] = value
    return stats


class PymemcacheBackend(ICacheBackend):
    """Single-server adapter over `pymemcache.client.base.Client`.

    The client opens its socket lazily on the first command, so `connect`
    only builds (or reuses) the client object; the connection manager's
    verification probe performs the first real round trip.
    """

    name = "pymemcache"
    _minimum_version = "3.5.0"

    def __init__(self, config: CacheConfig, client_factory: Optional[Callable[..., Any]] = None):
        """Initializes the adapter.

        Args:
            config: Cache configuration (endpoints, timeouts, thresholds).
            client_factory: Builds the underlying client; defaults to the
                pymemcache class. Tests inject an in-memory double here.
        """
        self.config = config
        self._client_factory = client_factory or self._default_factory
        self._client: Optional[Any] = None
        self._on_failure: Optional[FailureCallback] = None

    @property
    def server_label(self) -> str:
        return f"{self.config.host}:{self.config.port}"

    def _default_factory(self) -> Any:
        return Client(
            (self.config.host, self.config.port),
            serde=PassthroughSerde(),
            connect_timeout=self.config.connect_timeout,
            timeout=self.config.timeout,
            no_delay=True,
            default_noreply=False,
        )

    def connect(self) -> None:
        if self._client is None:
            self._client = self._client_factory()
            logger.debug(
                "Memcached client created",
                backend=self.name,
                server=self.server_label,
            )

    def set_failure_callback(self, callback: Optional[FailureCallback]) -> None:
        self._on_failure = callback

    @contextmanager
    def _measure_operation(self, operation: str):
        """A context manager to measure the duration of a memcached command."""
        start_time = time.time()
        try:
            yield
        finally:
            record_operation_duration(operation, time.time() - start_time)

    def _call(self, operation: str, method: str, *args, **kwargs) -> Any:
        """Runs a client command and translates library exceptions.

        Raises:
            BackendOperationError: If the server refused the command.
            TransientServerError: If the server could not be reached; the
                failure callback has already been invoked.
        """
        self.connect()
        try:
            with self._measure_operation(operation):
                return getattr(self._client, method)(*args, **kwargs)
        except _OPERATION_ERRORS as e:
            record_cache_error(operation, type(e).__name__)
            raise BackendOperationError(
                f"Memcached refused {operation}: {e}",
                context={"server": self.server_label},
            ) from e
        except _TRANSIENT_ERRORS as e:
            record_cache_error(operation, type(e).__name__)
            logger.warning(
                "Memcached server unreachable",
                operation=operation,
                server=self.server_label,
                error=str(e),
            )
            self._drop_connection()
            if self._on_failure is not None:
                self._on_failure(self.server_label, e)
            raise TransientServerError(
                f"Memcached server {self.server_label} unreachable during {operation}: {e}",
                server=self.server_label,
            ) from e

    def _drop_connection(self) -> None:
        closer = getattr(self._client, "close", None)
        if closer is not None:
            try:
                closer()
            except _TRANSIENT_ERRORS:
                logger.debug("Ignoring error while closing a failed socket", server=self.server_label)

    def get(self, key: str) -> Optional[StoredValue]:
        return self._call("get", "get", key)

    def get_many(self, keys: List[str]) -> Dict[str, StoredValue]:
        if not keys:
            return {}
        return self._call("get_many", "get_many", keys)

    def set(self, key: str, value: StoredValue, expire: int) -> bool:
        return bool(self._call("set", "set", key, value, expire=expire, noreply=False))

    def add(self, key: str, value: StoredValue, expire: int) -> bool:
        return bool(self._call("add", "add", key, value, expire=expire, noreply=False))

    def replace(self, key: str, value: StoredValue, expire: int) -> bool:
        return bool(self._call("replace", "replace", key, value, expire=expire, noreply=False))

    def delete(self, key: str) -> bool:
        return bool(self._call("delete", "delete", key, noreply=False))

    def incr(self, key: str, offset: int) -> Optional[int]:
        return self._call("incr", "incr", key, offset, noreply=False)

    def decr(self, key: str, offset: int) -> Optional[int]:
        return self._call("decr", "decr", key, offset, noreply=False)

    def flush(self) -> bool:
        self._call("flush", "flush_all", noreply=False)
        return True

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {self.server_label: _normalize_stats(self._call("stats", "stats"))}

    def disconnect(self) -> bool:
        if self._client is None:
            return True
        closer = getattr(self._client, "disconnect_all", None) or getattr(self._client, "close", None)
        if closer is not None:
            closer()
        self._client = None
        return True

    @property
    def library_version(self) -> Optional[str]:
        try:
            return metadata.version("pymemcache")
        except metadata.PackageNotFoundError:
            return None

    @property
    def minimum_version(self) -> str:
        return self._minimum_version


class HashBackend(PymemcacheBackend):
    """Multi-server adapter over `pymemcache.client.hash.HashClient`.

    Key distribution and dead-node tracking are the client library's job: a
    node is taken out of the ring after ``failure_threshold`` failed attempts
    and retried after ``dead_timeout`` seconds.
    """

    name = "pymemcache-hash"

    @property
    def server_label(self) -> str:
        return ",".join(f"{host}:{port}" for host, port in self.config.endpoints)

    def _default_factory(self) -> Any:
        return HashClient(
            self.config.endpoints,
            serde=PassthroughSerde(),
            connect_timeout=self.config.connect_timeout,
            timeout=self.config.timeout,
            no_delay=True,
            retry_attempts=self.config.failure_threshold,
            retry_timeout=1,
            dead_timeout=self.config.dead_timeout,
            ignore_exc=False,
            default_noreply=False,
        )

    def _drop_connection(self) -> None:
        # HashClient tracks failed nodes itself; dropping every socket would
        # also reset the healthy ones.
        pass

    def stats(self) -> Dict[str, Dict[str, Any]]:
        self.connect()
        results = {}
        for label, client in list(self._client.clients.items()):
            try:
                with self._measure_operation("stats"):
                    results[label] = _normalize_stats(client.stats())
            except _TRANSIENT_ERRORS as e:
                record_cache_error("stats", type(e).__name__)
                logger.warning("Could not read stats", server=label, error=str(e))
        return results


BACKENDS = {
    PymemcacheBackend.name: PymemcacheBackend,
    HashBackend.name: HashBackend,
}


def create_backend(config: CacheConfig, client_factory: Optional[Callable[..., Any]] = None) -> ICacheBackend:
    """Builds the adapter named by ``config.backend``.

    Args:
        config: Cache configuration.
        client_factory: Optional factory for the underlying client.

    Returns:
        The configured adapter.

    Raises:
        ValueError: If no adapter is registered under the configured name.
    """
    try:
        backend_cls = BACKENDS[config.backend]
    except KeyError:
        raise ValueError(f"No memcached adapter named '{config.backend}'") from None
    return backend_cls(config, client_factory=client_factory)
