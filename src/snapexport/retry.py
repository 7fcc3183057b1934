"""
Bounded retry policy shared by reachability polling and cloud operation polling.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised by :func:`retry_call` and :func:`poll_until` when the policy runs out."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"gave up after {attempts} attempts{detail}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-count retry schedule.

    Args:
        attempts: Total number of tries (>= 1)
        interval: Delay before the second try, in seconds
        backoff: Multiplier applied to the delay after each failed try
        max_interval: Upper bound for a single delay
    """

    attempts: int
    interval: float
    backoff: float = 1.0
    max_interval: float = 300.0

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")
        if self.interval < 0 or self.backoff < 1.0:
            raise ValueError("interval must be >= 0 and backoff >= 1.0")

    def delays(self) -> Iterator[float]:
        """Delays to sleep between consecutive tries (``attempts - 1`` values)."""
        delay = self.interval
        for _ in range(self.attempts - 1):
            yield min(delay, self.max_interval)
            delay *= self.backoff


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    describe: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it returns without raising one of ``retry_on``.

    Raises:
        RetryExhausted: If every attempt raised
    """
    delays = policy.delays()
    for attempt in range(1, policy.attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt == policy.attempts:
                raise RetryExhausted(policy.attempts, e) from e
            delay = next(delays)
            logger.debug("%s failed (attempt %d/%d): %s; retrying in %.0fs",
                         describe, attempt, policy.attempts, e, delay)
            sleep(delay)
    raise AssertionError("unreachable")


def poll_until(
    fn: Callable[[], Optional[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it returns something other than ``None``.

    Raises:
        RetryExhausted: If ``fn`` kept returning ``None``
    """
    delays = policy.delays()
    for attempt in range(1, policy.attempts + 1):
        result = fn()
        if result is not None:
            return result
        if attempt < policy.attempts:
            sleep(next(delays))
    raise RetryExhausted(policy.attempts)
