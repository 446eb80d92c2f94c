"""
Bounded retries with exponential backoff for calls to external services.
"""
import logging
import random
import time
from functools import wraps
from typing import Callable, Iterator

logger = logging.getLogger(__name__)


def backoff_delays(
    max_retries: int,
    initial_delay: float,
    max_delay: float = 30.0,
    factor: float = 2.0,
    jitter: float = 0.25,
) -> Iterator[float]:
    """Wait before each retry: initial_delay * factor**n plus up to `jitter` of it, capped at max_delay."""
    delay = initial_delay
    for _ in range(max_retries):
        yield min(delay + delay * jitter * random.random(), max_delay)
        delay *= factor


def retry_with_backoff(
    max_retries: int = 2,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exceptions: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry the wrapped call on the given exceptions.

    The call runs at most max_retries + 1 times; the last error propagates.
    Exceptions outside `exceptions` are never retried.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            delays = backoff_delays(max_retries, initial_delay, max_delay)
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    wait = next(delays, None)
                    if wait is None:
                        logger.error(
                            "retries_exhausted",
                            extra={"operation": func.__name__, "attempt": attempt, "error": str(e)},
                        )
                        raise
                    logger.warning(
                        "retrying_after_error",
                        extra={"operation": func.__name__, "attempt": attempt, "error": str(e)},
                    )
                    sleep(wait)
                    attempt += 1

        return wrapper
    return decorator
