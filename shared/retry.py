"""
Retry with exponential backoff for transient failures such as a dropped
database connection.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


@dataclass
class RetryConfig:
    """Backoff settings. Delays grow from base_delay by exponential_base up to max_delay."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(-0.1 * delay, 0.1 * delay)
        return max(0.0, delay)


class RetryError(Exception):
    """Raised once every attempt has failed."""

    def __init__(self, operation: str, last_exception: Exception, attempts: int):
        super().__init__(f"{operation} failed after {attempts} attempts: {last_exception}")
        self.operation = operation
        self.last_exception = last_exception
        self.attempts = attempts


async def retry_async(operation: Callable[[], Awaitable[Any]],
                      retry_on: Tuple[Type[Exception], ...],
                      config: Optional[RetryConfig] = None,
                      name: Optional[str] = None,
                      **log_context) -> Any:
    """
    Await `operation` until it succeeds, retrying only the `retry_on` types.

    Anything else propagates at once. `log_context` is bound to every retry
    log event so the journey or message being retried is named in the logs.
    """
    config = config or RetryConfig()
    name = name or getattr(operation, "__name__", "operation")
    logger = get_logger("retry").bind(operation=name, **log_context)

    attempt = 1
    while True:
        try:
            result = await operation()
        except retry_on as e:
            if attempt >= config.max_attempts:
                logger.error("retry_exhausted", attempts=attempt, error=str(e))
                raise RetryError(name, e, attempt) from e

            delay = config.delay_for(attempt)
            logger.warning("retry_scheduled", attempt=attempt, delay=round(delay, 3), error=str(e))
            await asyncio.sleep(delay)
            attempt += 1
            continue

        if attempt > 1:
            logger.info("retry_succeeded", attempts=attempt)
        return result
