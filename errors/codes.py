"""
Error code catalog for the rural bus backend.

This module defines all error codes used throughout the application,
covering validation errors, authorization errors, store failures,
and internal errors.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """
    Enumeration of all error codes used in the application.

    Each error code maps to a specific HTTP status code and error category:
    - Validation errors (4xx): Client request issues
    - Authorization errors (4xx): API key grant failures
    - Store errors (5xx): Backend store failures
    - Internal errors (5xx): Server-side issues
    """

    # Validation errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Request payload validation failed (HTTP 400)"""

    INVALID_REQUEST = "INVALID_REQUEST"
    """Malformed request structure (HTTP 400)"""

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    """Requested resource does not exist (HTTP 404)"""

    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    """HTTP verb not supported on this path (HTTP 405)"""

    # Authorization errors (4xx)
    UNAUTHORIZED = "UNAUTHORIZED"
    """API key missing, inactive, or bound to another bus (HTTP 401)"""

    RATE_LIMITED = "RATE_LIMITED"
    """Too many requests (HTTP 429)"""

    # Store errors (5xx)
    STORE_WRITE_FAILED = "STORE_WRITE_FAILED"
    """The store rejected a write (HTTP 500)"""

    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    """Store connection failed (HTTP 503)"""

    # Internal errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected server error (HTTP 500)"""

    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    """Circuit breaker is open (HTTP 503)"""


# Mapping of error codes to their default HTTP status codes
ERROR_CODE_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.STORE_WRITE_FAILED: 500,
    ErrorCode.STORE_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.CIRCUIT_OPEN: 503,
}

# Reverse lookup used when wrapping framework HTTP errors
STATUS_ERROR_CODE_MAP: dict[int, ErrorCode] = {
    400: ErrorCode.INVALID_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    404: ErrorCode.RESOURCE_NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    429: ErrorCode.RATE_LIMITED,
    503: ErrorCode.STORE_UNAVAILABLE,
}


def get_default_status_code(error_code: ErrorCode) -> int:
    """
    Get the default HTTP status code for an error code.

    Args:
        error_code: The error code to look up

    Returns:
        The default HTTP status code for the error code
    """
    return ERROR_CODE_STATUS_MAP.get(error_code, 500)


def error_code_for_status(status_code: int) -> ErrorCode:
    """Map an HTTP status code back to the closest error code."""
    return STATUS_ERROR_CODE_MAP.get(status_code, ErrorCode.INTERNAL_ERROR)
