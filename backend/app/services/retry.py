"""
Async retry with exponential backoff.

Used by the exchange clients for transient HTTP failures and by the API layer
for rate-limited document store writes.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry attempts."""

    attempts: int = 3  # total calls, including the first
    base_delay: float = 0.5  # seconds before the second call
    max_delay: float = 8.0

    def delay_for(self, retry_number: int) -> float:
        """Backoff before retry ``retry_number`` (0-based), doubling each time."""
        return min(self.max_delay, self.base_delay * (2**retry_number))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_on: Callable[[Exception], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation: str = "operation",
) -> T:
    """
    Call ``fn`` until it succeeds or the attempt budget is spent.

    Only exceptions for which ``retry_on`` returns True are retried; anything
    else (including cancellation) propagates immediately. The last retryable
    exception is re-raised once attempts are exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as e:
            if attempt >= policy.attempts or not retry_on(e):
                raise
            delay = policy.delay_for(attempt - 1)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{policy.attempts}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await sleep(delay)
