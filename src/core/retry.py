"""Retry combinator for the fetch step."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def linear_backoff(step_seconds: float) -> Callable[[int], float]:
    """Delay grows with the attempt number: step, 2*step, 3*step..."""

    def _delay(attempt: int) -> float:
        return attempt * step_seconds

    return _delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    backoff: Callable[[int], float],
    retry_on: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    Only exceptions in ``retry_on`` are retried; the last one is re-raised
    once attempts are exhausted. Cancellation is never swallowed.
    """

    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= attempts:
                LOGGER.error("Giving up after %s attempts: %s", attempts, exc)
                raise
            delay = backoff(attempt)
            LOGGER.warning("Attempt %s/%s failed (%s); retrying in %.1fs", attempt, attempts, exc, delay)
            await sleep(delay)
    raise AssertionError("unreachable")
