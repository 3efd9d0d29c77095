"""Retry policy for vendor calls.

Timeouts, rate limiting and dropped connections are transient: they are
retried with exponential backoff and, if they persist, surface as ordinary
errors. They never mark cached state as corrupt.
"""
import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# VendorTimeoutError subclasses TimeoutError, so rate limiting is covered too
RETRYABLE_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    EOFError,
    httpx.TransportError,
)


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> Callable:
    """Decorator factory for retry logic with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        exceptions: Tuple of exception types to retry on
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        policy = retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        if asyncio.iscoroutinefunction(func):
            @policy
            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> T:
                return await func(*args, **kwargs)  # type: ignore[misc]

            return async_wrapper  # type: ignore[return-value]

        @policy
        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            return func(*args, **kwargs)

        return sync_wrapper

    return decorator


def is_retryable(error: BaseException) -> bool:
    """True if ``error`` belongs to the transient failure class."""
    return isinstance(error, RETRYABLE_EXCEPTIONS)


@dataclass
class RetryPolicy:
    """with_retry settings applied to vendor calls at call time.

    Cache refresh and apply writes go through ``call`` so that a transient
    failure on one request is retried instead of failing the whole run.
    """
    max_attempts: int = 3
    min_wait: float = 1
    max_wait: float = 10
    exceptions: tuple = RETRYABLE_EXCEPTIONS

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``func(*args, **kwargs)``, retrying transient failures."""
        @with_retry(self.max_attempts, self.min_wait, self.max_wait, self.exceptions)
        async def attempt() -> T:
            return await func(*args, **kwargs)

        return await attempt()
