from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar


T = TypeVar("T")
logger = logging.getLogger(__name__)


def exponential_delay(initial: float, multiplier: float = 2.0, maximum: float = 20.0) -> Callable[[int], float]:
    def _delay(attempt: int) -> float:
        return min(maximum, initial * multiplier ** max(0, attempt - 1))

    return _delay


def retry_on(*error_types: type[BaseException], max_attempts: int) -> Callable[[Exception, int], bool]:
    def _should_retry(exc: Exception, attempt: int) -> bool:
        return attempt < max_attempts and isinstance(exc, error_types)

    return _should_retry


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    should_retry: Callable[[Exception, int], bool],
    delay: Callable[[int], float],
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run `operation` until it succeeds or `should_retry(exc, attempt)` says stop.

    `attempt` counts from 1 and refers to the attempt that just failed.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not should_retry(exc, attempt):
                raise
            wait = delay(attempt)
            logger.warning("%s failed attempt=%s retry_in=%.2fs error=%s", label, attempt, wait, exc)
            await sleep(wait)
