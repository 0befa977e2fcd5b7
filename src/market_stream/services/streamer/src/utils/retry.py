"""Retry utilities with exponential backoff."""

import asyncio
import inspect
import random
import logging
from typing import Awaitable, Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ExponentialBackoff:
    """
    Doubling delay with a floor and a ceiling, no jitter.

    ``current`` is the delay to wait before the next attempt. ``increase()``
    is called after a failed attempt, ``reset()`` after a success.
    """

    def __init__(self, initial: float = 1.0, maximum: float = 30.0, multiplier: float = 2.0):
        if initial <= 0 or maximum < initial:
            raise ValueError(f"Invalid backoff bounds: initial={initial}, maximum={maximum}")
        if multiplier < 1:
            raise ValueError(f"Backoff multiplier must be >= 1, got {multiplier}")

        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self._current = initial

    @property
    def current(self) -> float:
        return self._current

    def increase(self) -> float:
        """Grow the delay after a failure and return the new value."""
        self._current = min(self._current * self.multiplier, self.maximum)
        return self._current

    def reset(self) -> None:
        self._current = self.initial


async def exponential_backoff(
    func: Callable[[], Union[T, Awaitable[T]]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (Exception,),
    sleep: Optional[Callable[[float], Awaitable[None]]] = None
) -> T:
    """
    Execute a function with exponential backoff retry logic.

    Args:
        func: Function or coroutine function to execute
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        backoff_factor: Multiplier for delay after each failure
        jitter: Whether to add random jitter to delays
        exceptions: Tuple of exceptions to catch and retry on
        sleep: Awaitable sleep used between attempts (defaults to asyncio.sleep)

    Returns:
        Result of the function call

    Raises:
        The last exception encountered if all retries fail
    """
    sleep = sleep or asyncio.sleep
    delay = initial_delay

    for attempt in range(max_attempts):
        try:
            if inspect.iscoroutinefunction(func):
                return await func()
            return func()
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

            await sleep(actual_delay)
            delay *= backoff_factor

    raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
