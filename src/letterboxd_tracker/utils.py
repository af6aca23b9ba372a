"""Utility helpers for letterboxd_tracker."""

import time
import logging
from functools import wraps
from typing import TypeVar, Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator that retries a function with exponential backoff on failure.

    Args:
        max_attempts: Total number of calls before giving up (first call included)
        initial_delay: Delay in seconds before the first retry
        backoff_factor: Multiplier applied to the delay after every retry
        exceptions: Exception types that trigger a retry; anything else propagates at once
        sleep: Sleep function, replaceable in tests

    The last caught exception is re-raised once attempts are exhausted.

    Example:
        @retry_with_backoff(max_attempts=3, initial_delay=2.0, exceptions=(NetworkTransient,))
        def fetch_page():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: {e}"
                        )
                        raise
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    sleep(delay)
                    delay *= backoff_factor

            # max_attempts < 1: nothing was called
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        return wrapper
    return decorator
