"""Cache service exports with lazy loading."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - used only for static analysis
    from objcache.services.connection_manager import ConnectionManager
    from objcache.services.key_builder import GroupPolicy, KeyBuilder
    from objcache.services.object_cache import NullObjectCache, ObjectCache
    from objcache.services.serialization import ValueCodec

_EXPORTS = {
    "ObjectCache": "objcache.services.object_cache",
    "NullObjectCache": "objcache.services.object_cache",
    "ConnectionManager": "objcache.services.connection_manager",
    "KeyBuilder": "objcache.services.key_builder",
    "GroupPolicy": "objcache.services.key_builder",
    "ValueCodec": "objcache.services.serialization",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import services so pymemcache is only loaded when a cache is built."""

    if name in _EXPORTS:
        from importlib import import_module

        return getattr(import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module 'objcache.services' has no attribute {name!r}")
