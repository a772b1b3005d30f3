"""
Custom exception hierarchy for the object cache.

Every failure the cache can run into has a type here. Apart from
`EncodingRejectedError`, these exceptions never leave the `ObjectCache`
facade: they are caught at the facade boundary and turned into a failed
`CacheResult`, a log line and the ``last_error`` value.
"""

from typing import Any, Optional

from objcache.utils.error_codes import ErrorCode


class CacheError(Exception):
    """The base exception class for all object cache exceptions.

    Attributes:
        code: A machine-readable error code.
        context: Optional additional information about the error.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.BACKEND_OPERATION_FAILED,
        context: Optional[Any] = None,
    ):
        """Initializes the CacheError.

        Args:
            message: A human-readable message describing the error.
            code: A machine-readable code for the error.
            context: An optional dictionary for providing extra context.
        """
        super().__init__(message)
        self.code = code
        self.context = context

    @property
    def message(self) -> str:
        """The human-readable message, prefixed with the error code."""
        return f"[{self.code.value}] {self}"


class ValidationError(CacheError):
    """Raised when a key, group, expiration or value fails validation."""


class KeyValidationError(ValidationError):
    """Raised when a raw key cannot be turned into a wire key."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.INVALID_KEY, context: Optional[Any] = None):
        super().__init__(message, code=code, context=context)


class EncodingRejectedError(ValidationError):
    """Raised when a value cannot be serialized for storage.

    Trying to cache a resource, callable or open handle is a programming
    mistake, so this is the one error the facade lets through to its caller.
    """

    def __init__(self, message: str, value_type: Optional[str] = None, context: Optional[Any] = None):
        """Initializes the EncodingRejectedError.

        Args:
            message: Description of why the value was rejected.
            value_type: The name of the offending type.
            context: Optional additional context about the error.
        """
        super().__init__(message, code=ErrorCode.ENCODING_REJECTED, context=context)
        self.value_type = value_type


class DecodingError(CacheError):
    """Raised when a stored payload cannot be decoded."""

    def __init__(self, message: str, context: Optional[Any] = None):
        super().__init__(message, code=ErrorCode.DECODING_FAILED, context=context)


# --- Connection exceptions ---


class CacheConnectionError(CacheError):
    """Raised when the initial connect or the verification probe fails."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONNECTION_FAILED,
        server: Optional[str] = None,
        context: Optional[Any] = None,
    ):
        """Initializes the CacheConnectionError.

        Args:
            message: Description of the connection failure.
            code: The specific connection error code.
            server: The ``host:port`` that could not be reached.
            context: Optional additional context about the error.
        """
        super().__init__(message, code=code, context=context)
        self.server = server


class TransientServerError(CacheConnectionError):
    """Raised by a backend when a server becomes unreachable mid-session."""

    def __init__(self, message: str, server: Optional[str] = None, context: Optional[Any] = None):
        super().__init__(
            message, code=ErrorCode.TRANSIENT_SERVER_FAILURE, server=server, context=context
        )


class BackendOperationError(CacheError):
    """Raised when the server answers but refuses the command.

    Incrementing a non-numeric value is the typical case; the connection
    itself is still healthy.
    """

    def __init__(self, message: str, context: Optional[Any] = None):
        super().__init__(message, code=ErrorCode.BACKEND_OPERATION_FAILED, context=context)


# --- Configuration exceptions ---


class ConfigurationError(CacheError):
    """Base class for configuration-related errors."""


class ConfigurationRejectedError(ConfigurationError):
    """Raised when the configured host is not allow-listed."""

    def __init__(self, host: str, allowed_hosts: list, context: Optional[Any] = None):
        """Initializes the ConfigurationRejectedError.

        Args:
            host: The rejected host.
            allowed_hosts: The configured allow-list.
            context: Optional additional context about the error.
        """
        message = (
            f"Memcached host '{host}' is not allowed. Allowed hosts are: {', '.join(allowed_hosts)}"
        )
        super().__init__(message, code=ErrorCode.HOST_NOT_ALLOWED, context=context)
        self.host = host


class SettingsValidationError(ConfigurationError):
    """Raised when application settings validation fails."""

    def __init__(self, message: str, context: Optional[Any] = None):
        super().__init__(message, code=ErrorCode.SETTINGS_VALIDATION_ERROR, context=context)
