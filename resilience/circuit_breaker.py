"""
Circuit breaker guarding calls to the backing store.

States:
- CLOSED: calls pass through; consecutive failures are counted
- OPEN: calls are rejected immediately until the recovery timeout elapses
- HALF_OPEN: a single probe call decides between CLOSED and OPEN

The store opens its breaker after 3 consecutive failures and probes again
after 30 seconds.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional


class CircuitState(Enum):
    """
    Circuit breaker states.

    - CLOSED -> OPEN: after failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: once recovery_timeout has elapsed
    - HALF_OPEN -> CLOSED: probe succeeded
    - HALF_OPEN -> OPEN: probe failed
    """
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """
    Configuration for a circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds to stay open before allowing a probe.
        half_open_max_calls: Probe calls allowed while half-open.
    """
    failure_threshold: int = 3
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 1


class CircuitOpenException(Exception):
    """Raised instead of calling the protected operation while the circuit is open."""

    def __init__(self, circuit_name: str, retry_in_seconds: Optional[float] = None):
        self.circuit_name = circuit_name
        self.retry_in_seconds = retry_in_seconds

        message = f"Circuit breaker '{circuit_name}' is open"
        if retry_in_seconds is not None:
            message += f", retry in {int(retry_in_seconds)} seconds"

        super().__init__(message)


class CircuitBreaker:
    """
    Circuit breaker for async operations.

    Example:
        breaker = CircuitBreaker("elasticsearch")

        try:
            doc = await breaker.execute(store._get_document, "buses", bus_id)
        except CircuitOpenException:
            raise circuit_open()

    Args:
        name: Descriptive name used in errors and health output
        config: Thresholds; defaults apply when omitted
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._half_open_calls = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _retry_in(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.recovery_timeout - (self._clock() - self._opened_at))

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._half_open_calls = 0

    def _on_success(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at = None

    def _on_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trip()
            return

        self._failure_count += 1
        if self._failure_count >= self.config.failure_threshold:
            self._trip()

    async def _admit(self) -> None:
        """Decide whether a call may proceed, moving OPEN to HALF_OPEN when due."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._retry_in() > 0:
                    raise CircuitOpenException(self.name, self._retry_in())
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitOpenException(self.name, self._retry_in())
                self._half_open_calls += 1

    async def execute(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any
    ) -> Any:
        """
        Run ``func`` under breaker protection.

        Args:
            func: The coroutine function to call
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Whatever func returns

        Raises:
            CircuitOpenException: The circuit is open, func was not called
            Exception: Anything func raised (recorded as a failure)
        """
        await self._admit()

        try:
            result = await func(*args, **kwargs)
        except Exception:
            async with self._lock:
                self._on_failure()
            raise

        async with self._lock:
            self._on_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._half_open_calls = 0

    def snapshot(self) -> dict:
        """State summary for health output."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "retry_in_seconds": round(self._retry_in(), 1) if self._state == CircuitState.OPEN else None,
        }

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self.name!r}, state={self._state.value}, "
            f"failure_count={self._failure_count})"
        )
