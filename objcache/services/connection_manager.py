"""
Connection management for the object cache.

The `ConnectionManager` owns the single backend connection of a facade. It
refuses hosts that are not allow-listed, verifies every new connection with
a write/read/delete probe, and reconnects after mid-session failures with a
constant delay and a bounded number of attempts.
"""

import threading
import time
import uuid
from typing import Callable, Optional

from objcache.core.config import CacheConfig
from objcache.core.logging import get_logger
from objcache.interfaces import ICacheBackend, StoredValue
from objcache.models import ConnectionState
from objcache.monitoring.prometheus import record_reconnect_attempt, set_connection_status
from objcache.services.admin_notice import DegradedModeNotice
from objcache.services.memcache_backends import create_backend, parse_version
from objcache.utils.error_codes import ErrorCode, create_error_record
from objcache.utils.exceptions import (
    BackendOperationError,
    CacheConnectionError,
    CacheError,
    ConfigurationRejectedError,
)

logger = get_logger(__name__)

PROBE_KEY_PREFIX = "objcache_probe:"
PROBE_EXPIRE = 10


class ConnectionManager:
    """Owns the backend connection and its health state.

    States move between ``disconnected``, ``connected`` and ``degraded``
    (retries exhausted). All transitions happen under one re-entrant lock so
    a multithreaded host never runs two connects at once.
    """

    def __init__(
        self,
        config: CacheConfig,
        backend: Optional[ICacheBackend] = None,
        notice: Optional[DegradedModeNotice] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initializes the connection manager.

        Nothing is contacted here; call `connect` or `ensure_connection`.

        Args:
            config: Cache configuration.
            backend: Adapter to use; built from ``config.backend`` when omitted.
            notice: Degraded-mode notice raised when retries are exhausted.
            sleep: Sleep function used between retries.
        """
        self.config = config
        self.notice = notice
        self._sleep = sleep
        self._backend = backend
        self._backend_ready = False
        self._lock = threading.RLock()
        self._connecting = False

        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[str] = None
        self.retries = 0
        self._version_checked = False

    @property
    def backend(self) -> Optional[ICacheBackend]:
        """The backend adapter; None until the first connect attempt builds it."""
        return self._backend

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def _record_error(self, error: CacheError) -> None:
        self.last_error = error.message
        logger.warning(
            "Object cache connection problem",
            **create_error_record(
                error.code,
                str(error),
                server=f"{self.config.host}:{self.config.port}",
                state=self.state.value,
            ),
        )

    def _transition(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.info("Object cache state changed", old_state=self.state.value, new_state=state.value)
        self.state = state
        set_connection_status(state == ConnectionState.CONNECTED)

    def _ensure_backend(self) -> ICacheBackend:
        if self._backend is None:
            self._backend = create_backend(self.config)
        if not self._backend_ready:
            self._backend.set_failure_callback(self.handle_failure)
            self._backend_ready = True
        return self._backend

    def _check_library_version(self, backend: ICacheBackend) -> None:
        """Logs a warning when the client library is older than supported."""
        if self._version_checked:
            return
        self._version_checked = True
        installed = backend.library_version
        if installed is None:
            logger.warning("Could not determine the memcached client library version", backend=backend.name)
            return
        if parse_version(installed) < parse_version(backend.minimum_version):
            logger.warning(
                "Memcached client library is outdated",
                backend=backend.name,
                installed=installed,
                minimum=backend.minimum_version,
            )

    def _verify(self, backend: ICacheBackend) -> None:
        """Writes, reads back and deletes a throwaway key.

        Raises:
            CacheConnectionError: If the value read back differs.
            CacheError: If any probe command fails.
        """
        token = uuid.uuid4().hex
        probe_key = f"{PROBE_KEY_PREFIX}{token}"
        expected = StoredValue(token.encode("ascii"), 0)

        if not backend.set(probe_key, expected, PROBE_EXPIRE):
            raise CacheConnectionError(
                "Verification probe could not be stored",
                code=ErrorCode.VERIFICATION_FAILED,
            )
        stored = backend.get(probe_key)
        backend.delete(probe_key)
        if stored is None or stored.payload != expected.payload:
            raise CacheConnectionError(
                "Verification probe read back a different value",
                code=ErrorCode.VERIFICATION_FAILED,
            )

    def connect(self) -> ConnectionState:
        """Connects to the backing store and verifies the connection.

        A host outside ``allowed_hosts`` is rejected without any network
        call. Otherwise the backend is built (or reused), probed, and the
        state becomes ``connected`` only if the probe round-trips. A
        successful connect resets the retry counter and closes the current
        degraded-mode episode.

        Returns:
            The resulting connection state.
        """
        with self._lock:
            if self.config.host not in self.config.allowed_hosts:
                self._transition(ConnectionState.DISCONNECTED)
                self._record_error(
                    ConfigurationRejectedError(self.config.host, self.config.allowed_hosts)
                )
                return self.state

            self._connecting = True
            try:
                backend = self._ensure_backend()
                self._check_library_version(backend)
                backend.connect()
                self._verify(backend)
            except CacheError as e:
                self._transition(
                    ConnectionState.DEGRADED
                    if self.state == ConnectionState.DEGRADED
                    else ConnectionState.DISCONNECTED
                )
                if isinstance(e, BackendOperationError):
                    e = CacheConnectionError(str(e), code=ErrorCode.VERIFICATION_FAILED)
                self._record_error(e)
                return self.state
            except ValueError as e:
                self._transition(ConnectionState.DISCONNECTED)
                self._record_error(CacheConnectionError(str(e), code=ErrorCode.BACKEND_UNAVAILABLE))
                return self.state
            finally:
                self._connecting = False

            self.retries = 0
            self.last_error = None
            self._transition(ConnectionState.CONNECTED)
            if self.notice is not None:
                self.notice.resolve()
            logger.info(
                "Object cache connected",
                backend=backend.name,
                server=f"{self.config.host}:{self.config.port}",
                session=self.config.persistent_id,
            )
            return self.state

    def ensure_connection(self) -> bool:
        """Connects if not already connected.

        This is the only way automatic reconnects resume once the failure
        callback has exhausted its retries. A failed attempt opens (or
        continues) a degraded-mode episode.

        Returns:
            True if the backing store is connected.
        """
        if self.state == ConnectionState.CONNECTED:
            return True
        if self.connect() == ConnectionState.CONNECTED:
            return True
        if self.notice is not None:
            self.notice.raise_notice(
                f"The object cache could not connect to memcached at {self.config.host}:{self.config.port}: "
                f"{self.last_error}"
            )
        return False

    def handle_failure(self, server: str, error: Exception) -> None:
        """Failure callback invoked by the backend when a server drops out.

        Records the error and, while retries remain, sleeps the constant retry
        delay and reconnects. The counter is incremented before the reconnect
        so repeated failures can never recurse past ``max_retries``. Once the
        budget is spent the state becomes ``degraded`` and the admin notice is
        raised (unless failures are ignored).

        Failures raised while `connect` itself is probing are reported by
        `connect`'s return value and do not re-enter this callback.

        Args:
            server: The ``host:port`` that failed.
            error: The underlying exception.
        """
        with self._lock:
            if self._connecting:
                return

            self.last_error = f"[{ErrorCode.TRANSIENT_SERVER_FAILURE.value}] {server}: {error}"
            if self.state == ConnectionState.CONNECTED:
                self._transition(ConnectionState.DISCONNECTED)

            if self.state == ConnectionState.DEGRADED or self.retries >= self.config.max_retries:
                self._exhausted(server)
                return

            self.retries += 1
            record_reconnect_attempt()
            logger.info(
                "Reconnecting to memcached",
                server=server,
                attempt=self.retries,
                max_retries=self.config.max_retries,
                delay_ms=self.config.retry_delay_ms,
            )
            self._sleep(self.config.retry_delay_ms / 1000.0)
            if self.connect() != ConnectionState.CONNECTED and self.retries >= self.config.max_retries:
                self._exhausted(server)

    def _exhausted(self, server: str) -> None:
        self._transition(ConnectionState.DEGRADED)
        if self.notice is not None:
            self.notice.raise_notice(
                f"The object cache cannot reach memcached at {server}. "
                "Object caching is disabled until the server is reachable again."
            )

    def close(self) -> bool:
        """Releases the connection if the backend supports it.

        Returns:
            True when closed (or there was nothing to close).
        """
        with self._lock:
            closed = True
            if self._backend is not None:
                try:
                    closed = self._backend.disconnect()
                except CacheError as e:
                    self._record_error(e)
                    closed = False
            self._transition(ConnectionState.DISCONNECTED)
            return closed
