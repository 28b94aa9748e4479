"""Retry and backoff utilities for transient infrastructure failures.

Exponential backoff with optional jitter, retrying only the exception types
a caller declares transient. Everything else propagates on the first
failure.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""

    def __init__(self, last_exception: Exception, attempts: int) -> None:
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(f"Failed after {attempts} attempts. Last error: {last_exception}")


class RetryStrategy:
    """Backoff parameters plus the set of retryable exception types."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        exceptions: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        """Initialize retry strategy.

        Args:
            max_attempts: Total number of attempts, including the first call.
            initial_delay: Delay in seconds before the first retry.
            max_delay: Upper bound for any single delay.
            exponential_base: Base for exponential backoff calculation.
            jitter: Whether to spread delays randomly between 50% and 150%.
            exceptions: Exception types considered transient.
        """
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.exceptions = exceptions

    def should_retry(self, exception: BaseException) -> bool:
        return isinstance(exception, self.exceptions)

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is 0-indexed)."""
        delay = min(self.initial_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    strategy: RetryStrategy,
    on_retry: Callable[[Exception, int], None] | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)`` under ``strategy``.

    Raises:
        RetryError: When every attempt failed with a retryable exception.
        Exception: The first non-retryable exception, unchanged.
    """
    name = getattr(func, "__qualname__", repr(func))

    for attempt in range(strategy.max_attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not strategy.should_retry(e):
                logger.warning(
                    "Non-retryable exception in %s: %s",
                    name,
                    e,
                    extra={"function": name, "exception": str(e)},
                )
                raise

            if attempt >= strategy.max_attempts - 1:
                logger.error(
                    "All retry attempts exhausted for %s",
                    name,
                    extra={
                        "function": name,
                        "attempts": strategy.max_attempts,
                        "last_exception": str(e),
                    },
                )
                raise RetryError(e, strategy.max_attempts) from e

            delay = strategy.calculate_delay(attempt)
            logger.warning(
                "Retrying %s after %.2fs (attempt %d/%d)",
                name,
                delay,
                attempt + 1,
                strategy.max_attempts,
                extra={
                    "function": name,
                    "attempt": attempt + 1,
                    "max_attempts": strategy.max_attempts,
                    "delay": delay,
                    "exception": str(e),
                },
            )
            if on_retry:
                on_retry(e, attempt + 1)
            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error: max_attempts must be >= 1")


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    on_retry: Callable[[Exception, int], None] | None = None,
) -> Callable:
    """Decorator for retrying async functions with exponential backoff.

    Example:
        ```python
        @retry(max_attempts=3, initial_delay=0.1, exceptions=(RedisConnectionError,))
        async def get(self, key: str) -> str | None:
            return await self.client.get(key)
        ```
    """
    strategy = RetryStrategy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        exceptions=exceptions,
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(func, *args, strategy=strategy, on_retry=on_retry, **kwargs)

        return wrapper

    return decorator
