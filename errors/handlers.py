"""
Exception handlers for the rural bus backend.

This module provides FastAPI exception handlers that convert exceptions
to structured JSON error responses with a consistent envelope:
``{"success": false, "error", "error_code", "details", "request_id"}``.

Unexpected exceptions are logged with their full stack trace and
answered with a generic message that exposes no internal detail.
"""

import logging
import traceback
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from errors.codes import ErrorCode, error_code_for_status
from errors.exceptions import AppException

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Internal server error"


class ErrorResponse(BaseModel):
    """
    Structured error response model.

    All error responses from the API follow this format for consistency
    and to enable programmatic error handling by clients.
    """
    success: bool = False
    error: str
    error_code: str
    details: Optional[dict[str, Any]] = None
    request_id: str


def get_request_id(request: Request) -> str:
    """
    Get the request ID from the request state or generate a new one.

    Args:
        request: The FastAPI request object

    Returns:
        The request ID string
    """
    if hasattr(request.state, "request_id"):
        return request.state.request_id

    return str(uuid.uuid4())


def build_error_response(
    request: Request,
    status_code: int,
    error_code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Render the shared error envelope."""
    error_response = ErrorResponse(
        error=message,
        error_code=error_code.value,
        details=details,
        request_id=get_request_id(request),
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_none=True),
        headers=headers,
    )


async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle known application exceptions and convert to structured response.

    Args:
        request: The FastAPI request object
        exc: The AppException that was raised

    Returns:
        JSONResponse with structured error format
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Application error occurred",
        extra={"extra_data": {
            "error_code": exc.error_code.value,
            "error_message": exc.message,
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path,
            "method": request.method,
        }}
    )

    return build_error_response(
        request,
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details,
    )


async def handle_http_exception(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Wrap framework HTTP errors (unknown path, wrong verb) in the error envelope.

    Headers set by the framework, such as ``Allow`` on a 405, are preserved.
    """
    error_code = error_code_for_status(exc.status_code)
    message = exc.detail if isinstance(exc.detail, str) else error_code.value

    logger.info(
        f"HTTP {exc.status_code} for {request.method} {request.url.path}",
        extra={"extra_data": {
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        }}
    )

    return build_error_response(
        request,
        status_code=exc.status_code,
        error_code=error_code,
        message=message,
        headers=getattr(exc, "headers", None),
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI body/query validation failures to a 400 envelope."""
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(
        "Request validation failed",
        extra={"extra_data": {"path": request.url.path, "errors": errors}}
    )
    return build_error_response(
        request,
        status_code=400,
        error_code=ErrorCode.VALIDATION_ERROR,
        message="Invalid request payload",
        details={"validation_errors": errors},
    )


async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions safely without exposing internal details.

    This handler catches all unhandled exceptions, logs the full stack trace
    for debugging, and returns a generic error response to the client.

    Args:
        request: The FastAPI request object
        exc: The unexpected exception that was raised

    Returns:
        JSONResponse with generic error message (no internal details exposed)
    """
    logger.error(
        "Unexpected error occurred",
        extra={"extra_data": {
            "error_code": ErrorCode.INTERNAL_ERROR.value,
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "stack_trace": traceback.format_exc(),
        }},
        exc_info=True,
    )

    return build_error_response(
        request,
        status_code=500,
        error_code=ErrorCode.INTERNAL_ERROR,
        message=GENERIC_ERROR_MESSAGE,
    )


def register_exception_handlers(app) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(AppException, handle_app_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)

    # Catches anything the handlers above did not
    app.add_exception_handler(Exception, handle_unexpected_exception)

    logger.info("Exception handlers registered successfully")
