"""
Retry policy configuration for pipeline operations.

A RetryPolicy is stateless; the same instance can guard any number of
operations. Attempt history for one execution lives in RetryState.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Any

from shareflow.exceptions import DuplicateRecordError, ProviderNotFoundError, TransientIOError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    ``max_attempts`` counts executions, not retries: with the defaults an
    operation runs at most 3 times and waits 5s then 10s in between.

    Examples:
        >>> # Original worker behaviour
        >>> policy = RetryPolicy(max_attempts=3, initial_delay=5.0)

        >>> # Constant delay between attempts
        >>> policy = RetryPolicy(max_attempts=3, initial_delay=5.0, exponential_base=1.0)

        >>> # Retry only I/O failures
        >>> policy = RetryPolicy(retryable_exceptions=(TransientIOError,))
    """

    # Total executions, first attempt included
    max_attempts: int = 3

    # Delay after the first failed attempt (seconds)
    initial_delay: float = 5.0

    # delay = initial_delay * base^(attempt - 1)
    exponential_base: float = 2.0

    # Upper bound for a single delay (seconds)
    max_delay: float = 300.0

    # Random ±25% jitter on every delay
    jitter: bool = False

    # Only retry these exception types (None = retry everything not listed below)
    retryable_exceptions: tuple[type[BaseException], ...] | None = None

    # Never retry these, even when they match retryable_exceptions
    non_retryable_exceptions: tuple[type[BaseException], ...] = (DuplicateRecordError,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")

    def is_retryable(self, exception: BaseException) -> bool:
        """Whether the exception type allows another attempt at all."""
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        if self.retryable_exceptions is not None:
            return isinstance(exception, self.retryable_exceptions)
        return True

    def should_retry(self, exception: BaseException, attempt: int) -> bool:
        """
        Decide whether to run again after a failure.

        Args:
            exception: The exception raised by the failed attempt
            attempt: Number of the failed attempt (1-indexed)
        """
        if attempt >= self.max_attempts:
            return False
        return self.is_retryable(exception)

    def get_delay(self, attempt: int) -> float:
        """
        Delay before the attempt that follows ``attempt`` (1-indexed).

        Implements: min(initial_delay * base^(attempt-1), max_delay), with
        optional jitter applied before the cap.
        """
        delay = self.initial_delay * (self.exponential_base ** (attempt - 1))
        if self.jitter:
            delay *= random.uniform(0.75, 1.25)
        return min(delay, self.max_delay)

    @classmethod
    def from_config(cls, data: dict[str, Any] | None, default: "RetryPolicy") -> "RetryPolicy":
        """Build a policy from a config section, falling back to ``default`` per field."""
        data = data or {}
        return cls(
            max_attempts=int(data.get("max_attempts", default.max_attempts)),
            initial_delay=float(data.get("initial_delay", default.initial_delay)),
            exponential_base=float(data.get("exponential_base", default.exponential_base)),
            max_delay=float(data.get("max_delay", default.max_delay)),
            jitter=bool(data.get("jitter", default.jitter)),
            retryable_exceptions=default.retryable_exceptions,
            non_retryable_exceptions=default.non_retryable_exceptions,
        )


@dataclass
class RetryState:
    """Attempt history of one retried execution."""

    operation: str
    attempts: int = 0
    exceptions: list[dict[str, Any]] = field(default_factory=list)
    delays: list[float] = field(default_factory=list)
    succeeded: bool = False
    final_exception: BaseException | None = None

    def record_attempt(self, exception: BaseException | None = None) -> None:
        self.attempts += 1
        if exception is not None:
            self.exceptions.append(
                {
                    "attempt": self.attempts,
                    "exception_type": type(exception).__name__,
                    "exception_message": str(exception),
                    "timestamp": time.time(),
                }
            )

    def record_delay(self, delay: float) -> None:
        self.delays.append(delay)

    def mark_success(self) -> None:
        self.succeeded = True

    def mark_failure(self, exception: BaseException) -> None:
        self.succeeded = False
        self.final_exception = exception


# Whole download -> upload -> insert unit of work
TASK_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    initial_delay=5.0,
    exponential_base=2.0,
    non_retryable_exceptions=(DuplicateRecordError, ProviderNotFoundError),
)

# Catalog insert only; constant delay between attempts
CATALOG_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    initial_delay=5.0,
    exponential_base=1.0,
    retryable_exceptions=(TransientIOError,),
)

NO_RETRY_POLICY = RetryPolicy(max_attempts=1, initial_delay=0.0)
