"""Utility package with lazy exports to avoid import cycles with the config layer."""

from __future__ import annotations

from importlib import import_module
from typing import Any, Dict, Tuple

_LAZY_IMPORTS: Dict[str, Tuple[str, str]] = {
    # Exceptions
    "CacheError": ("objcache.utils.exceptions", "CacheError"),
    "ValidationError": ("objcache.utils.exceptions", "ValidationError"),
    "KeyValidationError": ("objcache.utils.exceptions", "KeyValidationError"),
    "EncodingRejectedError": ("objcache.utils.exceptions", "EncodingRejectedError"),
    "DecodingError": ("objcache.utils.exceptions", "DecodingError"),
    "CacheConnectionError": ("objcache.utils.exceptions", "CacheConnectionError"),
    "TransientServerError": ("objcache.utils.exceptions", "TransientServerError"),
    "BackendOperationError": ("objcache.utils.exceptions", "BackendOperationError"),
    "ConfigurationRejectedError": ("objcache.utils.exceptions", "ConfigurationRejectedError"),
    # Error codes/helpers
    "ErrorCode": ("objcache.utils.error_codes", "ErrorCode"),
    "ErrorMessages": ("objcache.utils.error_codes", "ErrorMessages"),
    "create_error_record": ("objcache.utils.error_codes", "create_error_record"),
}

__all__ = sorted(_LAZY_IMPORTS)


def __getattr__(name: str) -> Any:
    """Dynamically import requested attributes on first access."""

    try:
        module_name, attr_name = _LAZY_IMPORTS[name]
    except KeyError as exc:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}") from exc

    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    """Return sorted attributes for IDE support."""

    return sorted(__all__)
