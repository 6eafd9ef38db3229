"""Retry utilities with exponential backoff."""

import asyncio
import random
import logging
from typing import Callable, Awaitable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def exponential_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (Exception,)
) -> T:
    """
    Execute an async function with exponential backoff retry logic.

    Args:
        func: Async function to execute
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        backoff_factor: Multiplier for delay after each failure
        jitter: Whether to add random jitter to delays
        exceptions: Tuple of exceptions to catch and retry on

    Returns:
        Result of the function call

    Raises:
        The last exception encountered if all attempts fail
    """
    delay = initial_delay

    for attempt in range(max_attempts):
        try:
            return await func()
        except exceptions as e:
            if attempt == max_attempts - 1:
                logger.error(f"Function failed after {max_attempts} attempts: {e}")
                raise

            if jitter:
                # ±25% of the delay
                jitter_range = delay * 0.25
                actual_delay = delay + random.uniform(-jitter_range, jitter_range)
            else:
                actual_delay = delay

            actual_delay = min(actual_delay, max_delay)

            logger.warning(
                f"Attempt {attempt + 1}/{max_attempts} failed: {e}. "
                f"Retrying in {actual_delay:.2f} seconds..."
            )

            await asyncio.sleep(actual_delay)
            delay *= backoff_factor

    raise ValueError("max_attempts must be at least 1")


class ReconnectBackoff:
    """
    Delay sequence for reconnection attempts.

    Each call to ``next_delay`` returns the current delay and doubles it for
    the following attempt, capped at ``max_delay``. ``reset`` goes back to
    the initial delay and is called once a connection is fully established.
    """

    def __init__(self, initial_delay: float = 1.0, max_delay: float = 60.0, factor: float = 2.0):
        self.initial_delay = initial_delay
        self.max_delay = max(max_delay, initial_delay)
        self.factor = factor
        self.attempts = 0
        self._delay = initial_delay

    @property
    def current_delay(self) -> float:
        return self._delay

    def next_delay(self) -> float:
        delay = self._delay
        self.attempts += 1
        self._delay = min(self._delay * self.factor, self.max_delay)
        return delay

    def reset(self):
        self.attempts = 0
        self._delay = self.initial_delay
