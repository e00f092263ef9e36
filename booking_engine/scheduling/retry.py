"""
Bounded retry for transactional attempts that hit serialization failures.

Only infrastructure failures are retried. A business conflict is a normal
return value of the wrapped operation and passes straight through.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from booking_engine.errors import SerializationFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS_CEILING = 3


@dataclass
class RetryOutcome(Generic[T]):
    """Either a value, or exhaustion after ``attempts`` transient failures."""
    value: Optional[T]
    attempts: int
    exhausted: bool = False
    last_error: Optional[Exception] = None


def retry_transient(
    operation: Callable[[int], T],
    max_attempts: int = 3,
    backoff_seconds: float = 0.05,
    retry_on: tuple[type[Exception], ...] = (SerializationFailure,),
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome[T]:
    """
    Run ``operation(attempt)`` until it returns without a retryable error.

    Args:
        operation: Called with the 1-based attempt number. Each call must
            open and close its own transaction.
        max_attempts: Upper bound on calls, capped at 3.
        backoff_seconds: Base delay, doubled per attempt with jitter.
        retry_on: Exception types treated as transient.
        sleep: Injectable delay function (tests pass a no-op).

    Returns:
        RetryOutcome with the operation's value, or ``exhausted=True``.
        Exceptions not in ``retry_on`` propagate unchanged.
    """
    max_attempts = max(1, min(max_attempts, MAX_ATTEMPTS_CEILING))
    last_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return RetryOutcome(value=operation(attempt), attempts=attempt)
        except retry_on as exc:
            last_error = exc
            logger.warning(
                "Transient store failure on attempt %d/%d: %s", attempt, max_attempts, exc
            )
            if attempt < max_attempts and backoff_seconds > 0:
                delay = backoff_seconds * (2 ** (attempt - 1))
                sleep(delay + random.uniform(0, delay))

    return RetryOutcome(
        value=None, attempts=max_attempts, exhausted=True, last_error=last_error
    )
