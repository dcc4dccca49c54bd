"""
Retry Strategy for Repo Monitor ticks.

Provides:
- RetryConfig: max attempts + fixed delay between attempts
- with_retry: Async wrapper that re-runs a whole attempt
- is_retryable_error: Error classification for callers that want it

Usage:
    from collectors.retry_strategy import with_retry, RetryConfig

    config = RetryConfig(max_attempts=3, delay_seconds=10.0)
    result = await with_retry(run_attempt, config)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3       # Total attempts, including the first
    delay_seconds: float = 10.0  # Fixed wait between attempts

    def get_wait_seconds(self, attempt: int) -> float:
        """Wait before the next attempt. Fixed, no escalation."""
        return self.delay_seconds


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error looks transient.

    Retryable errors:
    - ConnectionError, TimeoutError, httpx transport errors
    - HTTP 5xx and 429
    """
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or 500 <= status < 600

    return False


class RetryExhaustedError(Exception):
    """Raised when every attempt failed."""

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"All {attempts} attempts failed. Last error: {last_error}")


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retry_on: Optional[Tuple[Type[Exception], ...]] = (Exception,),
    on_attempt: Optional[Callable[[int], None]] = None,
) -> T:
    """
    Execute an async function with a fixed-delay retry policy.

    Args:
        func: Async function to execute (no arguments)
        config: Retry configuration
        retry_on: Exception types that trigger a retry (None = is_retryable_error)
        on_attempt: Called with the 1-based attempt number before each attempt

    Returns:
        Result of func() on success

    Raises:
        RetryExhaustedError: all attempts failed with retryable errors
        Any non-retryable exception, immediately
    """
    attempts = max(1, config.max_attempts)

    for attempt in range(1, attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)

        try:
            return await func()

        except asyncio.CancelledError:
            raise

        except Exception as e:
            if retry_on is not None:
                should_retry = isinstance(e, retry_on)
            else:
                should_retry = is_retryable_error(e)

            if not should_retry:
                raise

            if attempt >= attempts:
                logger.error(f"All {attempts} attempts exhausted. Last error: {e}")
                raise RetryExhaustedError(attempts, e) from e

            wait_time = config.get_wait_seconds(attempt)
            logger.warning(
                f"Attempt {attempt}/{attempts} failed: {e}. "
                f"Retrying in {wait_time:.2f}s..."
            )
            await asyncio.sleep(wait_time)

    raise RuntimeError("Unexpected state in with_retry")
