"""
Bounded retry with exponential backoff for store and gateway calls.

Only RetryableError subclasses are retried. Definitive rejections (invalid
signature, not found, invalid request) propagate on the first attempt.
"""
import logging
import random
import time
from typing import Callable, TypeVar

from worksheetgen.core.config import (
    STORE_RETRY_ATTEMPTS,
    STORE_RETRY_BASE_DELAY,
    STORE_RETRY_MAX_DELAY,
)
from worksheetgen.core.errors import RetryableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def calculate_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (1-based), with +/-20% jitter."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    return delay * (0.8 + random.random() * 0.4)


def retry_call(
    fn: Callable[[], T],
    attempts: int = STORE_RETRY_ATTEMPTS,
    base_delay: float = STORE_RETRY_BASE_DELAY,
    max_delay: float = STORE_RETRY_MAX_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "operation",
) -> T:
    """
    Call `fn` until it succeeds, a non-retryable error is raised, or attempts run out.

    Args:
        fn: Zero-argument callable to invoke
        attempts: Total number of attempts (first call included)
        base_delay: Delay in seconds before the first retry
        max_delay: Upper bound for a single delay
        sleep: Sleep function, injectable for tests
        operation: Name used in log lines

    Returns:
        Whatever `fn` returns

    Raises:
        The last RetryableError once attempts are exhausted, or any other
        exception immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except RetryableError as e:
            if attempt >= attempts:
                logger.error(f"{operation} failed after {attempt} attempts: {e}")
                raise
            delay = calculate_backoff(attempt, base_delay, max_delay)
            logger.warning(
                f"{operation} failed (attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}"
            )
            sleep(delay)
