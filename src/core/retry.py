"""Retry policy for transient provider failures."""

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upper bound for a single backoff sleep
MAX_RETRY_DELAY = 30.0


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to retry one call.

    Sleeps ``backoff_base * 2^(attempt-1)`` seconds between attempts, capped
    at ``max_delay``. Only exceptions in ``retry_on`` are retried; anything
    else propagates on the first attempt.
    """

    max_attempts: int = 3
    backoff_base: float = 2.0
    max_delay: float = MAX_RETRY_DELAY
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** (attempt - 1)), self.max_delay)

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        label: Optional[str] = None,
        **kwargs: Any,
    ) -> T:
        name = label or fn.__name__
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await fn(*args, **kwargs)
            except self.retry_on as exc:
                if attempt == attempts:
                    logger.error(f"{name} failed after {attempts} attempts: {exc}")
                    raise
                delay = self.delay(attempt)
                logger.warning(
                    f"{name} attempt {attempt}/{attempts} failed: {exc}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)


def async_retry(
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Callable:
    """Decorator form of RetryPolicy for functions with a fixed policy."""
    policy = RetryPolicy(max_attempts=max_attempts, backoff_base=backoff_base, retry_on=retry_on)

    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await policy.call(fn, *args, **kwargs)
        return wrapper
    return decorator
