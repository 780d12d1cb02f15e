"""
Security headers middleware.

Adds X-Content-Type-Options, X-Frame-Options, Referrer-Policy and a
Content-Security-Policy to every HTTP response. The service only returns
JSON, so the policy forbids loading anything at all.
"""

import logging
from typing import Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


DEFAULT_CSP_DIRECTIVES = {
    "default-src": "'none'",
    "frame-ancestors": "'none'",
    "base-uri": "'none'",
    "form-action": "'none'",
}


def build_csp_header(directives: Optional[Dict[str, str]] = None) -> str:
    """
    Build a Content-Security-Policy header value from directives.

    Args:
        directives: Mapping of directive name to value. Defaults to
            DEFAULT_CSP_DIRECTIVES.

    Returns:
        Header value in the form "directive1 value1; directive2 value2"
    """
    if directives is None:
        directives = DEFAULT_CSP_DIRECTIVES

    return "; ".join(f"{key} {value}" for key, value in directives.items())


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware that stamps a fixed set of security headers on responses."""

    def __init__(
        self,
        app: ASGIApp,
        x_content_type_options: str = "nosniff",
        x_frame_options: str = "DENY",
        referrer_policy: str = "no-referrer",
        csp_directives: Optional[Dict[str, str]] = None,
    ):
        super().__init__(app)
        self.headers = {
            "X-Content-Type-Options": x_content_type_options,
            "X-Frame-Options": x_frame_options,
            "Referrer-Policy": referrer_policy,
            "Content-Security-Policy": build_csp_header(csp_directives),
        }

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        response = await call_next(request)
        for name, value in self.headers.items():
            # Leave headers an endpoint set deliberately
            response.headers.setdefault(name, value)
        return response


def setup_security_headers(
    app,
    x_frame_options: str = "DENY",
    csp_directives: Optional[Dict[str, str]] = None,
) -> None:
    """
    Add SecurityHeadersMiddleware to a FastAPI application.

    Args:
        app: The FastAPI application instance
        x_frame_options: Value for the X-Frame-Options header
        csp_directives: Optional CSP directives replacing the defaults
    """
    app.add_middleware(
        SecurityHeadersMiddleware,
        x_frame_options=x_frame_options,
        csp_directives=csp_directives,
    )

    logger.info(
        "Security headers configured",
        extra={"extra_data": {"x_frame_options": x_frame_options}}
    )
