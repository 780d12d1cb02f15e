"""
Rate limiting for the HTTP API.

Limits are enforced per client IP with slowapi. Two budgets exist: one for
the browsing/form API and a larger one for the location ingest endpoint,
which devices call every few seconds.
"""

import logging
from typing import Callable, Dict

from fastapi import FastAPI, Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from errors.codes import ErrorCode
from errors.handlers import build_error_response

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from the request.

    Proxy forwarding headers are checked before the direct client address.

    Args:
        request: The incoming FastAPI request

    Returns:
        The client's IP address as a string
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First entry is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


limiter = Limiter(key_func=get_client_ip)

# Per-minute budgets, replaced by setup_rate_limiting from settings
_limits: Dict[str, int] = {"api": 100, "ingest": 120}


def get_rate_limit_string(requests_per_minute: int) -> str:
    """
    Format a per-minute budget in slowapi notation (e.g. "100/minute").
    """
    return f"{requests_per_minute}/minute"


def _api_limit() -> str:
    return get_rate_limit_string(_limits["api"])


def _ingest_limit() -> str:
    return get_rate_limit_string(_limits["ingest"])


def api_rate_limit() -> Callable:
    """Decorator applying the browsing/form API budget."""
    return limiter.limit(_api_limit)


def ingest_rate_limit() -> Callable:
    """Decorator applying the location ingest budget."""
    return limiter.limit(_ingest_limit)


def setup_rate_limiting(
    app: FastAPI,
    api_requests_per_minute: int = 100,
    ingest_requests_per_minute: int = 120,
    enabled: bool = True
) -> None:
    """
    Configure rate limiting for a FastAPI application.

    The limiter is always attached to ``app.state`` because slowapi's
    decorators look it up there; ``enabled`` switches enforcement.

    Args:
        app: The FastAPI application instance
        api_requests_per_minute: Budget for the browsing/form API
        ingest_requests_per_minute: Budget for the location ingest endpoint
        enabled: Whether limits are enforced
    """
    _limits["api"] = api_requests_per_minute
    _limits["ingest"] = ingest_requests_per_minute
    limiter.enabled = enabled

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    logger.info(
        "Rate limiting configured",
        extra={"extra_data": {
            "enabled": enabled,
            "api_per_minute": api_requests_per_minute,
            "ingest_per_minute": ingest_requests_per_minute,
        }}
    )


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Answer a rate limit breach with the shared error envelope and Retry-After.

    Args:
        request: The request that exceeded the limit
        exc: The RateLimitExceeded exception

    Returns:
        429 JSON response
    """
    retry_after = 60

    logger.warning(
        f"Rate limit exceeded for IP {get_client_ip(request)}",
        extra={"extra_data": {
            "path": request.url.path,
            "method": request.method,
            "limit": str(exc.detail),
        }}
    )

    return build_error_response(
        request,
        status_code=429,
        error_code=ErrorCode.RATE_LIMITED,
        message="Too many requests. Please slow down.",
        details={"limit": str(exc.detail), "retry_after_seconds": retry_after},
        headers={"Retry-After": str(retry_after)},
    )
