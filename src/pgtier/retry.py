"""Retry strategies with exponential backoff and jitter.

Example:
    >>> strategy = ExponentialBackoff(max_retries=3, base_delay=1.0, max_delay=30.0)
    >>> ctx = RetryContext(strategy)
    >>> ack = ctx.run(uploader.upload, bucket, path, key)
"""

import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, TypeVar

from pgtier.errors import is_retryable
from pgtier.timestamps import utc_now

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0 = first retry)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another attempt should be made after ``attempt`` failures."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    Only errors flagged retryable (see :func:`pgtier.errors.is_retryable`)
    are retried.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0, delay)

        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt > self.max_retries:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True


@dataclass
class RetryContext:
    """Runs a callable under a retry strategy and records each failure."""

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], None] = time.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or the strategy gives up.

        Raises:
            The last exception once retries are exhausted or it is not retryable
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utc_now()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt - 1)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                self.sleep(delay)
