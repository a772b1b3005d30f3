"""
Standardized error codes for the object cache.

This module defines the error codes attached to every cache exception and
failed result, together with human-readable messages. The codes make log
lines and ``last_error`` values machine-searchable.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Defines standardized error codes for the cache.

    Error Code Ranges:
    - 1000-1099: Key, group and value validation errors
    - 2000-2099: Connection and backend errors
    - 3000-3099: Serialization errors
    - 5000-5099: Configuration errors
    """

    # Validation errors (1000-1099)
    INVALID_KEY = "E1001"
    EMPTY_KEY = "E1002"
    INVALID_EXPIRATION = "E1003"
    INVALID_OFFSET = "E1004"

    # Connection and backend errors (2000-2099)
    CONNECTION_FAILED = "E2001"
    VERIFICATION_FAILED = "E2002"
    TRANSIENT_SERVER_FAILURE = "E2003"
    BACKEND_OPERATION_FAILED = "E2004"
    BACKEND_UNAVAILABLE = "E2005"

    # Serialization errors (3000-3099)
    ENCODING_REJECTED = "E3001"
    DECODING_FAILED = "E3002"

    # Configuration errors (5000-5099)
    HOST_NOT_ALLOWED = "E5001"
    SETTINGS_VALIDATION_ERROR = "E5002"


class ErrorMessages:
    """Provides human-readable messages for each defined error code."""

    MESSAGES = {
        ErrorCode.INVALID_KEY: "Cache keys must be non-empty strings.",
        ErrorCode.EMPTY_KEY: "The cache key contains no usable characters after sanitization.",
        ErrorCode.INVALID_EXPIRATION: "The expiration could not be interpreted as a number of seconds.",
        ErrorCode.INVALID_OFFSET: "Increment and decrement offsets must be integers.",
        ErrorCode.CONNECTION_FAILED: "Could not connect to the memcached server.",
        ErrorCode.VERIFICATION_FAILED: "The memcached server did not pass the read/write verification probe.",
        ErrorCode.TRANSIENT_SERVER_FAILURE: "A memcached server became unreachable during the session.",
        ErrorCode.BACKEND_OPERATION_FAILED: "The memcached server rejected the operation.",
        ErrorCode.BACKEND_UNAVAILABLE: "No memcached client is available. Object caching is disabled.",
        ErrorCode.ENCODING_REJECTED: "The value cannot be stored in the cache.",
        ErrorCode.DECODING_FAILED: "The stored value could not be decoded.",
        ErrorCode.HOST_NOT_ALLOWED: "The configured memcached host is not in the allow-list.",
        ErrorCode.SETTINGS_VALIDATION_ERROR: "Cache settings validation failed. Check WP_CACHE_* environment variables.",
    }

    @classmethod
    def get_message(cls, error_code: ErrorCode) -> str:
        """Retrieves the message for a given error code.

        Args:
            error_code: The `ErrorCode` for which to retrieve the message.

        Returns:
            The corresponding error message as a string.
        """
        return cls.MESSAGES.get(error_code, "An unknown cache error occurred.")


def create_error_record(
    error_code: ErrorCode,
    detail: Optional[str] = None,
    **additional_context,
) -> Dict[str, Any]:
    """Constructs a standardized dictionary describing an error.

    Used as the structured ``context`` of log lines emitted when a cache
    failure is recovered locally.

    Args:
        error_code: The `ErrorCode` enum member for this error.
        detail: An optional, more specific message about the error.
        **additional_context: Extra key-value pairs to include under 'context'.

    Returns:
        A dictionary with the error code, the standard message and details.
    """
    record: Dict[str, Any] = {
        "error_code": error_code.value,
        "error_message": ErrorMessages.get_message(error_code),
    }
    if detail:
        record["detail"] = detail
    if additional_context:
        record["context"] = additional_context
    return record
