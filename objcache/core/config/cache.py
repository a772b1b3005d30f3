"""Object cache (memcached) configuration settings."""

import hashlib
import os
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

SUPPORTED_BACKENDS = ("pymemcache", "pymemcache-hash", "none")


def fingerprint_install_path(install_path: str) -> str:
    """Derives the default instance key prefix from an installation path.

    Args:
        install_path: Filesystem path identifying this installation.

    Returns:
        An 8 hex character fingerprint followed by the key separator.
    """
    digest = hashlib.blake2b(
        os.path.abspath(install_path).encode("utf-8"), digest_size=4
    ).hexdigest()
    return f"{digest}:"


class CacheConfig(BaseSettings):
    """Memcached-backed object cache configuration.

    Values are read once at startup and are treated as immutable for the
    lifetime of the process.

    Attributes:
        host: Memcached server host.
        port: Memcached server port.
        servers: Additional ``host:port`` endpoints used by the hashing backend.
        allowed_hosts: Hosts the connection manager is allowed to contact.
        backend: Client adapter to use (pymemcache, pymemcache-hash or none).
        install_path: Installation path fingerprinted into the default key prefix.
        key_prefix: Instance key prefix; derived from install_path when empty.
        default_expire: TTL in seconds used when a call passes no expiration.
        persistent_id: Connection session name, logged with connection events.
        max_retries: Reconnect attempts made by the failure callback.
        retry_delay_ms: Constant delay between reconnect attempts.
        connect_timeout: Socket connect timeout in seconds.
        timeout: Socket operation timeout in seconds.
        failure_threshold: Failed attempts before a node is considered down.
        dead_timeout: Seconds a node stays marked down before it is retried.
        compress_threshold: Payload size in bytes above which values are
            zlib-compressed (0 disables compression).
        ignore_failures: Silence the admin notice on connection failures.
        debug: Enable debug logging of every cache operation.
        notice_screens: Admin screens on which the degraded notice renders.
        global_groups: Groups shared by every instance (no key prefix).
        ignored_groups: Groups that never reach the backing store.
    """

    host: str = Field(default="127.0.0.1", description="Memcached host", min_length=1)
    port: int = Field(default=11211, description="Memcached port", ge=1, le=65535)
    servers: List[str] = Field(
        default_factory=list,
        description="Additional host:port endpoints for the hashing backend",
    )
    allowed_hosts: List[str] = Field(
        default_factory=lambda: ["127.0.0.1", "localhost", "::1"],
        description="Hosts the cache is allowed to connect to",
    )
    backend: str = Field(default="pymemcache", description="Client adapter name")

    install_path: str = Field(default_factory=os.getcwd, description="Installation path")
    key_prefix: str = Field(default="", description="Instance key prefix", max_length=64)
    default_expire: int = Field(default=3600, description="Default TTL in seconds", ge=0)
    persistent_id: str = Field(default="objcache", description="Connection session name")

    max_retries: int = Field(default=2, description="Reconnect attempts", ge=0, le=20)
    retry_delay_ms: int = Field(default=100, description="Delay between retries", ge=0)
    connect_timeout: float = Field(default=1.0, description="Connect timeout", gt=0)
    timeout: float = Field(default=1.0, description="Operation timeout", gt=0)
    failure_threshold: int = Field(
        default=2, description="Failures before a node is considered down", ge=1
    )
    dead_timeout: int = Field(default=60, description="Seconds a node stays down", ge=0)
    compress_threshold: int = Field(
        default=0, description="Compress payloads larger than this (0 = off)", ge=0
    )

    ignore_failures: bool = Field(default=False, description="Silence failure notices")
    debug: bool = Field(default=False, description="Debug logging of cache operations")
    notice_screens: List[str] = Field(
        default_factory=lambda: ["dashboard", "plugins"],
        description="Admin screens that display the degraded-mode notice",
    )

    global_groups: List[str] = Field(default_factory=list, description="Global groups")
    ignored_groups: List[str] = Field(default_factory=list, description="Ignored groups")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validates that the backend names a known client adapter.

        Args:
            v: The backend name.

        Returns:
            The normalized backend name.

        Raises:
            ValueError: If the backend is not supported.
        """
        v = v.lower()
        if v not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported cache backend '{v}'. Choose one of: {', '.join(SUPPORTED_BACKENDS)}"
            )
        return v

    @field_validator("servers")
    @classmethod
    def validate_servers(cls, v: List[str]) -> List[str]:
        """Validates that each extra server is written as host:port."""
        for server in v:
            host, _, port = server.rpartition(":")
            if not host or not port.isdigit():
                raise ValueError(f"Server '{server}' must be formatted as host:port")
        return v

    @model_validator(mode="after")
    def derive_key_prefix(self):
        """Fills in the instance key prefix from the installation path."""
        if not self.key_prefix:
            self.key_prefix = fingerprint_install_path(self.install_path)
        return self

    @property
    def endpoints(self) -> List[tuple]:
        """All configured (host, port) endpoints, primary first."""
        endpoints = [(self.host, self.port)]
        for server in self.servers:
            host, _, port = server.rpartition(":")
            if (host, int(port)) not in endpoints:
                endpoints.append((host, int(port)))
        return endpoints

    class Config:
        """Pydantic configuration."""

        env_prefix = "WP_CACHE_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
