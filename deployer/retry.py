"""
Bounded retry for async operations.
"""

import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger("retry")

T = TypeVar("T")


async def retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    should_retry: Callable[[Exception, int], bool],
) -> T:
    """
    Run `operation` up to `attempts` times.

    After a failure, `should_retry(error, attempt)` decides whether another
    attempt is made. The error of the last attempt, or the first error that
    is not retried, is raised unchanged.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= attempts or not should_retry(e, attempt):
                raise
            logger.info(f"Attempt #{attempt}/{attempts} failed ({e}), retrying")
            attempt += 1
