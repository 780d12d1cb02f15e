"""
Resilience patterns for the rural bus backend.

Circuit breaking for store calls and retry with exponential backoff for
start-up connections.
"""

from resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenException,
    CircuitState,
)
from resilience.retry import (
    RetryConfig,
    RetryExhaustedException,
    calculate_delay,
    retry_async,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenException",
    "CircuitState",
    # Retry
    "RetryConfig",
    "RetryExhaustedException",
    "calculate_delay",
    "retry_async",
]
