"""
Retry with exponential backoff.

Used at start-up to connect the store and the Redis relay: a backing
service that is still booting gets three attempts, 1 s then 2 s apart.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Total number of attempts, the first one included.
        initial_delay: Delay in seconds before the second attempt.
        exponential_base: Multiplier applied to the delay after each attempt.
        max_delay: Optional cap on a single delay in seconds.
        retryable_exceptions: Exception types that trigger another attempt.
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    exponential_base: float = 2.0
    max_delay: Optional[float] = None
    retryable_exceptions: Tuple[Type[Exception], ...] = field(
        default_factory=lambda: (Exception,)
    )


class RetryExhaustedException(Exception):
    """Raised when every attempt failed; wraps the last error."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_exception: Exception,
        operation_name: Optional[str] = None
    ):
        self.attempts = attempts
        self.last_exception = last_exception
        self.operation_name = operation_name
        super().__init__(message)


def calculate_delay(
    attempt: int,
    initial_delay: float,
    exponential_base: float,
    max_delay: Optional[float] = None
) -> float:
    """
    Delay before retrying after the given zero-based attempt.

    With the defaults this yields 1.0, 2.0, 4.0, ...

    Args:
        attempt: Zero-based index of the attempt that just failed
        initial_delay: Delay after the first failure
        exponential_base: Growth factor
        max_delay: Optional cap

    Returns:
        Delay in seconds
    """
    delay = initial_delay * (exponential_base ** attempt)

    if max_delay is not None:
        delay = min(delay, max_delay)

    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    operation_name: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any
) -> T:
    """
    Await ``func(*args, **kwargs)``, retrying retryable failures with backoff.

    Example:
        await retry_async(store.connect, operation_name="store_connect")

    Args:
        func: The coroutine function to call
        *args: Positional arguments for func
        config: Retry settings; defaults to 3 attempts starting at 1 s
        operation_name: Name used in log lines
        sleep: Awaitable sleep, replaceable in tests
        **kwargs: Keyword arguments for func

    Returns:
        The result of the first successful call

    Raises:
        RetryExhaustedException: When all attempts failed
    """
    cfg = config or RetryConfig()
    op_name = operation_name or getattr(func, "__name__", "operation")

    for attempt in range(cfg.max_attempts):
        try:
            return await func(*args, **kwargs)
        except cfg.retryable_exceptions as e:
            if attempt == cfg.max_attempts - 1:
                logger.error(
                    f"Retry exhausted for operation '{op_name}' after {cfg.max_attempts} attempts",
                    exc_info=True,
                    extra={"extra_data": {
                        "operation": op_name,
                        "attempts": cfg.max_attempts,
                        "last_error": str(e),
                        "error_type": type(e).__name__,
                    }}
                )
                raise RetryExhaustedException(
                    f"Operation '{op_name}' failed after {cfg.max_attempts} attempts",
                    attempts=cfg.max_attempts,
                    last_exception=e,
                    operation_name=op_name
                ) from e

            delay = calculate_delay(
                attempt, cfg.initial_delay, cfg.exponential_base, cfg.max_delay
            )
            logger.warning(
                f"Attempt {attempt + 1}/{cfg.max_attempts} of '{op_name}' failed, "
                f"retrying in {delay:.2f}s",
                extra={"extra_data": {
                    "operation": op_name,
                    "attempt": attempt + 1,
                    "max_attempts": cfg.max_attempts,
                    "delay_seconds": delay,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }}
            )
            await sleep(delay)

    raise ValueError("RetryConfig.max_attempts must be at least 1")
