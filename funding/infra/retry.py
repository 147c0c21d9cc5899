"""
Retry outbound calls with exponential backoff and jitter.
"""
import logging
import random
import time
from functools import wraps
from typing import Any, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delays(max_retries: int, initial_delay: float, max_delay: float, exponential_base: float, jitter: bool):
    """Yield the wait before each retry."""
    delay = initial_delay
    for _ in range(max_retries):
        # Up to 25% random jitter
        actual_delay = delay + delay * 0.25 * random.random() if jitter else delay
        yield min(actual_delay, max_delay)
        delay *= exponential_base


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (Exception,),
):
    """
    Decorator retrying a call that raised one of ``exceptions``.

    Args:
        max_retries: Retries after the first attempt
        initial_delay: Wait before the first retry, in seconds
        max_delay: Upper bound of any wait, in seconds
        exponential_base: Growth factor of the wait
        jitter: Whether to add random jitter to the wait
        exceptions: Exceptions worth retrying; anything else propagates at once
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            delays = backoff_delays(max_retries, initial_delay, max_delay, exponential_base, jitter)
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    delay = next(delays, None)
                    if delay is None:
                        raise
                    attempt += 1
                    logger.warning(
                        "retrying_call",
                        extra={"event_type": func.__qualname__, "count": attempt, "error": str(e)},
                    )
                    time.sleep(delay)

        return wrapper
    return decorator
