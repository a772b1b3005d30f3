"""
Interface for memcached client adapters.

Defines the small capability contract the cache facade is coded against.
Each supported client library gets its own adapter; the adapter is chosen
from configuration, never by probing for installed libraries at call time.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, NamedTuple, Optional

FailureCallback = Callable[[str, Exception], None]


class StoredValue(NamedTuple):
    """A raw value as it travels on the wire."""

    payload: bytes
    flags: int = 0


class ICacheBackend(ABC):
    """
    Interface for memcached client adapters.

    Adapters translate library exceptions into the cache exception types:
    connection-level failures raise `TransientServerError` (after invoking
    the registered failure callback), refused commands raise
    `BackendOperationError`.
    """

    name: str = "abstract"

    @abstractmethod
    def connect(self) -> None:
        """
        Open (or reuse) the connection to the configured servers.

        Raises:
            TransientServerError: If no server can be reached
        """
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[StoredValue]:
        """
        Fetch a raw value.

        Args:
            key: Wire key

        Returns:
            The stored payload and flags, or None when the key is absent
        """
        pass

    @abstractmethod
    def get_many(self, keys: List[str]) -> Dict[str, StoredValue]:
        """
        Fetch several raw values in one round trip.

        Args:
            keys: Wire keys

        Returns:
            Mapping of the keys that were found to their stored values
        """
        pass

    @abstractmethod
    def set(self, key: str, value: StoredValue, expire: int) -> bool:
        """
        Store a value unconditionally.

        Returns:
            True if the server stored the value
        """
        pass

    @abstractmethod
    def add(self, key: str, value: StoredValue, expire: int) -> bool:
        """
        Store a value only if the key does not exist yet.

        Returns:
            True if stored, False if the key already existed
        """
        pass

    @abstractmethod
    def replace(self, key: str, value: StoredValue, expire: int) -> bool:
        """
        Store a value only if the key already exists.

        Returns:
            True if stored, False if the key was absent
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key was deleted, False if it did not exist
        """
        pass

    @abstractmethod
    def incr(self, key: str, offset: int) -> Optional[int]:
        """
        Atomically increment a numeric value.

        Returns:
            The new value, or None when the key is absent

        Raises:
            BackendOperationError: If the stored value is not numeric
        """
        pass

    @abstractmethod
    def decr(self, key: str, offset: int) -> Optional[int]:
        """
        Atomically decrement a numeric value (memcached clamps at zero).

        Returns:
            The new value, or None when the key is absent
        """
        pass

    @abstractmethod
    def flush(self) -> bool:
        """
        Invalidate every item on every server.

        Returns:
            True on success
        """
        pass

    @abstractmethod
    def stats(self) -> Dict[str, Dict[str, Any]]:
        """
        Collect server statistics.

        Returns:
            Mapping of ``host:port`` to that server's statistics
        """
        pass

    @abstractmethod
    def disconnect(self) -> bool:
        """
        Close the connection if the client supports it.

        Returns:
            True when the connection was closed or nothing needed closing
        """
        pass

    @abstractmethod
    def set_failure_callback(self, callback: Optional[FailureCallback]) -> None:
        """
        Register the function invoked when a server becomes unreachable.

        Args:
            callback: Called with the ``host:port`` and the underlying error
        """
        pass

    @property
    @abstractmethod
    def library_version(self) -> Optional[str]:
        """Installed version of the client library, if it can be determined."""
        pass

    @property
    @abstractmethod
    def minimum_version(self) -> str:
        """Oldest client library version the adapter is tested against."""
        pass
