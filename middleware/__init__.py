"""
Middleware components for the rural bus backend.

This module contains FastAPI middleware for cross-cutting concerns
such as request correlation, cross-origin access, rate limiting and
security headers.
"""

from middleware.request_id import RequestIDMiddleware, request_id_var
from middleware.rate_limiter import (
    limiter,
    setup_rate_limiting,
    api_rate_limit,
    ingest_rate_limit,
    get_client_ip,
)
from middleware.security_headers import (
    SecurityHeadersMiddleware,
    setup_security_headers,
    build_csp_header,
    DEFAULT_CSP_DIRECTIVES,
)
from middleware.cors import IngestCORSMiddleware, CORS_HEADERS, INGEST_PATH

__all__ = [
    "RequestIDMiddleware",
    "request_id_var",
    "limiter",
    "setup_rate_limiting",
    "api_rate_limit",
    "ingest_rate_limit",
    "get_client_ip",
    "SecurityHeadersMiddleware",
    "setup_security_headers",
    "build_csp_header",
    "DEFAULT_CSP_DIRECTIVES",
    "IngestCORSMiddleware",
    "CORS_HEADERS",
    "INGEST_PATH",
]
