"""Exponential backoff shared by the fetcher, status reporter and job retries."""

import logging
import math
import time
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay after a failed attempt using exponential backoff.

        Args:
            attempt: The attempt that just failed (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    def __repr__(self):
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, initial_delay={self.initial_delay}, "
            f"max_delay={self.max_delay}, backoff_multiplier={self.backoff_multiplier})"
        )


# Queue-level policy attached at enqueue time: 3 attempts, 1s, 2s, ...
JOB_RETRY = RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=3600.0, backoff_multiplier=2)

# In-stage network retries (source download, status callback).
NETWORK_RETRY = RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=30.0, backoff_multiplier=2)


def call_with_retry(
    func: Callable[[], T],
    *,
    config: RetryConfig,
    retry_on: Tuple[Type[BaseException], ...],
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds or ``config.max_attempts`` is reached.

    Only exceptions in ``retry_on`` are retried; the last one is re-raised
    once attempts run out. Anything else propagates immediately.
    """
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as exc:
            if attempt >= config.max_attempts:
                logger.warning("%s failed after %d attempt(s): %s", description, attempt, exc)
                raise
            delay = config.calculate_delay(attempt)
            logger.info(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description, attempt, config.max_attempts, exc, delay,
            )
            sleep(delay)
            attempt += 1
