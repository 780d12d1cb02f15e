"""
Request ID middleware for request correlation.

Every request gets an id, taken from the incoming X-Request-ID header or
freshly generated, so that log lines, error bodies and the response header
can be tied back to one call.
"""

import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Readable from anywhere in the request's async context (the JSON log formatter uses it)
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"

# Longer client-supplied ids are replaced rather than echoed
MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware that attaches a request ID to each request.

    The id is stored in ``request.state.request_id`` for the error handlers,
    in ``request_id_var`` for logging, and echoed in the response header.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        """
        Assign the request id, run the request, and echo the id back.

        Args:
            request: The incoming FastAPI request
            call_next: The next middleware or route handler

        Returns:
            The response with X-Request-ID header added
        """
        request_id = request.headers.get(REQUEST_ID_HEADER, "").strip()
        if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)


def get_request_id() -> str:
    """
    Get the current request ID from the context variable.

    Returns:
        The current request ID, or empty string if not in a request context
    """
    return request_id_var.get()
