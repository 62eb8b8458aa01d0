"""
Bounded retry utilities.

Webhook delivery retries with a linear delay (base_delay * attempt) and a
fixed number of attempts.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)

DEFAULT_RETRY_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
)


class RetryError(Exception):
    """Raised when every attempt failed."""

    def __init__(self, last_exception: BaseException, attempts: int):
        super().__init__(f"Gave up after {attempts} attempts: {last_exception}")
        self.last_exception = last_exception
        self.attempts = attempts


def calculate_linear_delay(attempt: int, base_delay: float = 1.0) -> float:
    """Delay before the retry that follows ``attempt`` (1-indexed)."""
    return base_delay * attempt


async def retry_async(
    func: Callable[[int], Awaitable[Any]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_exceptions: Tuple[Type[BaseException], ...] = DEFAULT_RETRY_EXCEPTIONS,
    delay_fn: Callable[[int, float], float] = calculate_linear_delay,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_failure: Optional[Callable[[int, BaseException], None]] = None,
) -> Tuple[Any, int]:
    """
    Call ``func(attempt)`` until it succeeds or attempts run out.

    Args:
        func: Coroutine function receiving the 1-indexed attempt number
        max_attempts: Total attempts including the first
        base_delay: Base delay fed to ``delay_fn``
        retry_exceptions: Exception types that trigger another attempt
        delay_fn: Maps (attempt, base_delay) to seconds to wait
        sleep: Awaitable sleep, injectable for tests
        on_failure: Called with (attempt, exception) for every failed attempt

    Returns:
        Tuple of (result, attempts used)

    Raises:
        RetryError: If every attempt failed
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(attempt), attempt
        except retry_exceptions as e:
            last_exception = e
            if on_failure is not None:
                on_failure(attempt, e)

            if attempt == max_attempts:
                break

            delay = delay_fn(attempt, base_delay)
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed: {e}. Retrying in {delay:.2f}s"
            )
            await sleep(delay)

    raise RetryError(last_exception or RuntimeError("no attempts made"), max_attempts)
