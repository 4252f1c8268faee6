"""
Retry Handler - Exponential backoff and retry logic
"""

import asyncio
import functools
from typing import Any, Awaitable, Callable, Optional

from utils.logger import get_logger

log = get_logger("retry")


class RetryHandler:
    def __init__(self):
        self.max_attempts = 3
        self.initial_delay_ms = 500
        self.max_delay_ms = 5000

    def compute_delay_ms(self, attempt: int, initial_delay_ms: int = None, max_delay_ms: int = None) -> int:
        """Delay after the given (1-based) failed attempt"""
        initial = self.initial_delay_ms if initial_delay_ms is None else initial_delay_ms
        maximum = self.max_delay_ms if max_delay_ms is None else max_delay_ms
        return min(initial * (2 ** (attempt - 1)), maximum)

    async def retry_with_exponential_backoff(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        max_attempts: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
        on_retry: Optional[Callable[[Exception, int], Awaitable[None]]] = None,
        **kwargs
    ) -> Any:
        """
        Retry function with exponential backoff

        Args:
            func: Async function to retry
            max_attempts: Total attempts including the first (default: 3)
            initial_delay_ms: Delay after the first failure (default: 500)
            max_delay_ms: Upper bound for any single delay (default: 5000)
            on_retry: Awaited as on_retry(error, attempt) before each retry
            *args, **kwargs: Arguments for func

        Returns:
            Result from func

        Raises:
            The last exception if every attempt fails
            ValueError if max_attempts is below 1
        """
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        for attempt in range(1, max_attempts + 1):
            try:
                result = await func(*args, **kwargs)

                if attempt > 1:
                    log.info("Retry successful", attempt=attempt, func=getattr(func, '__name__', str(func)))

                return result

            except Exception as e:
                if attempt == max_attempts:
                    log.error(
                        "All retry attempts failed",
                        attempts=max_attempts,
                        error=str(e),
                        func=getattr(func, '__name__', str(func)),
                    )
                    raise

                delay_ms = self.compute_delay_ms(attempt, initial_delay_ms, max_delay_ms)

                log.warning("Attempt failed, retrying", attempt=attempt, delay_ms=delay_ms, error=str(e))

                if on_retry:
                    await on_retry(e, attempt)

                await asyncio.sleep(delay_ms / 1000)


# Singleton instance
retry_handler = RetryHandler()


def with_retry(max_attempts: int = 3, initial_delay_ms: int = 500, max_delay_ms: int = 5000):
    """
    Decorator form of retry_with_exponential_backoff

    Usage:
        @with_retry(max_attempts=2)
        async def call_service():
            ...
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_handler.retry_with_exponential_backoff(
                func,
                *args,
                max_attempts=max_attempts,
                initial_delay_ms=initial_delay_ms,
                max_delay_ms=max_delay_ms,
                **kwargs
            )
        return wrapper
    return decorator
