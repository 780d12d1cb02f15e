"""
Exception classes for the rural bus backend.

This module provides the AppException class and convenience factory
functions for creating application-specific exceptions with proper
error codes and HTTP status codes.
"""

from typing import Any, Optional

from errors.codes import ErrorCode, get_default_status_code


class AppException(Exception):
    """
    Base exception class for all application-specific errors.

    This exception provides structured error information including:
    - error_code: A standardized error code from the ErrorCode enum
    - message: A human-readable error message
    - status_code: The HTTP status code to return
    - details: Optional additional context (e.g., field-level errors)

    Example:
        raise AppException(
            error_code=ErrorCode.VALIDATION_ERROR,
            message="Invalid latitude value",
            status_code=400,
            details={"field": "latitude", "reason": "Must be between -90 and 90"}
        )
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Initialize an AppException.

        Args:
            error_code: The error code from the ErrorCode enum
            message: A human-readable error message
            status_code: The HTTP status code (defaults to the error code's default)
            details: Optional dictionary with additional error context
        """
        self.error_code = error_code
        self.message = message
        self.status_code = status_code or get_default_status_code(error_code)
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for JSON serialization.

        Returns:
            Dictionary containing error_code, message, and details
        """
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"AppException(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, status_code={self.status_code}, "
            f"details={self.details!r})"
        )


# Factories for the errors the ingest pipeline and the store raise

def validation_error(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Payload failed validation; ``details`` carries the per-field errors."""
    return AppException(ErrorCode.VALIDATION_ERROR, message, details=details)


def resource_not_found(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """A grant points at a bus row that no longer exists."""
    return AppException(ErrorCode.RESOURCE_NOT_FOUND, message, details=details)


def unauthorized(
    message: str = "Invalid API key or bus ID",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """
    The API key is unknown, inactive, or granted for another bus.

    The message is the same in all three cases so callers cannot probe
    which keys exist.
    """
    return AppException(ErrorCode.UNAUTHORIZED, message, details=details)


def store_write_failed(
    message: str = "Failed to update bus location",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    return AppException(ErrorCode.STORE_WRITE_FAILED, message, details=details)


def store_unavailable(
    message: str = "Bus store unavailable",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    return AppException(ErrorCode.STORE_UNAVAILABLE, message, details=details)


def internal_error(
    message: str = "Internal server error",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Unexpected failure; the message never includes the underlying error."""
    return AppException(ErrorCode.INTERNAL_ERROR, message, details=details)


def circuit_open(
    message: str = "Bus store temporarily unavailable",
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Raised without calling the store while its circuit breaker is open."""
    return AppException(ErrorCode.CIRCUIT_OPEN, message, details=details)
