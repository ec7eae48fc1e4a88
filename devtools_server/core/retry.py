"""Bounded retry combinator for async operations."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    delay: float = 0.0,
) -> T:
    """Run ``operation`` and re-run it on retryable errors.

    ``retries`` is the number of additional attempts after the first one,
    so ``retries=0`` means a single attempt.  Only exceptions matching
    ``retry_on`` are retried; anything else propagates immediately.  Once
    attempts are exhausted the last retryable error is re-raised.
    """
    if retries < 0:
        raise ValueError("retries must be >= 0")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            if attempt > retries:
                raise
            logger.debug(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt, retries + 1, e, delay,
            )
            if delay:
                await asyncio.sleep(delay)
