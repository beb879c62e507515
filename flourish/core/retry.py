"""Bounded retry policy shared by the store and other I/O call sites."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def no_backoff(attempt: int) -> float:
    return 0.0


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    """Backoff function waiting the same number of seconds before every retry."""

    def backoff(attempt: int) -> float:
        return seconds

    return backoff


def exponential_backoff(base: float = 0.5, cap: float = 10.0) -> Callable[[int], float]:
    """Backoff function returning ``base * 2**(attempt - 1)`` seconds, capped."""

    def backoff(attempt: int) -> float:
        return min(cap, base * (2 ** (attempt - 1)))

    return backoff


class RetryExhausted(Exception):
    """Raised when every attempt of a retried operation failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class RetryPolicy:
    """
    Retry an operation a fixed number of times.

    ``max_attempts`` counts the first try. ``retry_on`` lists the exception
    types worth retrying; anything else propagates immediately. Between
    attempts ``on_retry`` runs (e.g. to reconnect), then the policy sleeps
    for ``backoff(attempt)`` seconds.
    """

    max_attempts: int = 3
    backoff: Callable[[int], float] = no_backoff
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def call(
        self,
        operation: Callable[[], T],
        on_retry: Callable[[int, BaseException], None] | None = None,
        description: str = "operation",
    ) -> T:
        """
        Run ``operation`` until it succeeds or attempts run out.

        Raises:
            RetryExhausted: If the last attempt failed with a retryable error.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except self.retry_on as e:
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}): {e}"
                )
                if on_retry is not None:
                    on_retry(attempt, e)
                if attempt == self.max_attempts:
                    raise RetryExhausted(self.max_attempts, e) from e
                delay = self.backoff(attempt)
                if delay > 0:
                    self.sleep(delay)
        raise RuntimeError(f"{description} was never attempted")
