"""
Retry with exponential backoff for the upstream CRM client.

Only transient failures are retried; the caller decides which exception
types count as transient.
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from salesboard.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 2.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: float = 0.1  # random jitter factor

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt, without jitter."""
        return min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )


async def retry_with_backoff(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    sleep: Callable[[float], Any] = asyncio.sleep,
    **kwargs
) -> Any:
    """
    Execute function with exponential backoff retry.

    Args:
        func: Async function to execute
        *args: Positional arguments for func
        config: Retry configuration
        retryable_exceptions: Exceptions to retry on; anything else propagates at once
        sleep: Awaitable sleep used between attempts
        **kwargs: Keyword arguments for func

    Returns:
        Result of func

    Raises:
        Last exception if all retries fail
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    f"All {config.max_attempts} retry attempts failed",
                    extra={"error": str(e)}
                )
                raise

            delay = config.delay_for(attempt)
            delay += delay * config.jitter * random.random()

            logger.warning(
                f"Attempt {attempt} failed, retrying in {delay:.2f}s",
                extra={"attempt": attempt, "delay": delay, "error": str(e)}
            )

            await sleep(delay)
