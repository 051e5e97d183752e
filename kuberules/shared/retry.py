"""
Backoff for watch reconnects and remote policy fetches.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from kuberules.shared.logging import get_logger


@dataclass
class RetryConfig:
    """Attempt budget and exponential backoff bounds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based).

        Doubles from ``base_delay`` up to ``max_delay``; jitter spreads the
        result by up to 10% either way.
        """
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(-delay * 0.1, delay * 0.1)
        return max(0.0, delay)


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Retry an async function on the given exceptions.

    Once ``config.max_attempts`` calls have failed, the last exception is
    re-raised unchanged so callers handle it like a single failure.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        logger = get_logger(f"kuberules.retry.{func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= config.max_attempts:
                        logger.error("Giving up", attempts=attempt, error=str(e))
                        raise
                    delay = config.delay(attempt)
                    logger.warning("Attempt failed, retrying", attempt=attempt, delay=delay, error=str(e))
                await asyncio.sleep(delay)
                attempt += 1

        return wrapper

    return decorator
