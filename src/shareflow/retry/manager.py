"""
Retry manager for executing async operations with exponential backoff.

Retry scopes can be nested: the worker wraps the whole file task in one
policy and the catalog insert inside it in another. Without a budget the
attempt counts multiply (outer x inner). An AttemptBudget shared by both
scopes caps the total instead.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from shareflow.exceptions import TerminalTaskError
from shareflow.observability.metrics import MetricsRegistry
from shareflow.retry.policy import TASK_RETRY_POLICY, RetryPolicy, RetryState
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.retry.manager")

T = TypeVar("T")


class AttemptBudget:
    """
    Combined attempt allowance shared by nested retry scopes.

    Every attempt at any level consumes one unit; once spent, no scope starts
    another attempt.
    """

    def __init__(self, total: int):
        if total < 1:
            raise ValueError("attempt budget must be >= 1")
        self.total = total
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.used)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.total

    def consume(self) -> None:
        self.used += 1


def _effective_error(exception: BaseException) -> BaseException:
    # An inner scope's terminal failure is judged by what caused it.
    if isinstance(exception, TerminalTaskError):
        return exception.root_error
    return exception


class RetryManager:
    """
    Runs async callables under a RetryPolicy.

    Examples:
        >>> manager = RetryManager()
        >>> record = await manager.execute(ingest, task, policy=TASK_RETRY_POLICY, operation="ingest")

        >>> # Observe backoff without sleeping (tests)
        >>> delays = []
        >>> async def fake_sleep(seconds):
        ...     delays.append(seconds)
        >>> manager = RetryManager(sleep=fake_sleep)
    """

    def __init__(
        self,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        metrics: MetricsRegistry | None = None,
    ):
        """
        Args:
            sleep: Coroutine used for backoff waits (default: asyncio.sleep)
            metrics: Optional metrics registry for attempt counters
        """
        self._sleep = sleep or asyncio.sleep
        self.metrics = metrics

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        policy: RetryPolicy | None = None,
        operation: str | None = None,
        budget: AttemptBudget | None = None,
        **kwargs: Any,
    ) -> T:
        """
        Execute ``func(*args, **kwargs)`` with retry.

        Args:
            func: Async function to execute
            policy: Retry policy (defaults to TASK_RETRY_POLICY)
            operation: Name used in logs, metrics and the terminal error
            budget: Optional combined attempt budget shared with nested scopes

        Returns:
            Result of the first successful attempt

        Raises:
            TerminalTaskError: No attempt succeeded and no further attempt is allowed
        """
        policy = policy or TASK_RETRY_POLICY
        state = RetryState(operation=operation or getattr(func, "__name__", "operation"))

        while True:
            if budget is not None:
                budget.consume()

            try:
                logger.debug(f"Executing {state.operation} (attempt {state.attempts + 1}/{policy.max_attempts})")
                result = await func(*args, **kwargs)
            except Exception as e:
                state.record_attempt(exception=e)

                retry = policy.should_retry(_effective_error(e), state.attempts)
                if retry and budget is not None and budget.exhausted:
                    logger.warning(f"{state.operation}: combined attempt budget of {budget.total} spent")
                    retry = False

                if not retry:
                    state.mark_failure(e)
                    self._record(state.operation, "exhausted")
                    logger.error(f"{state.operation} failed after {state.attempts} attempt(s): {e}")
                    raise TerminalTaskError(state.operation, state.attempts, e) from e

                delay = policy.get_delay(state.attempts)
                state.record_delay(delay)
                self._record(state.operation, "retry")
                logger.warning(
                    f"{state.operation} attempt {state.attempts}/{policy.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await self._sleep(delay)
                continue

            state.record_attempt()
            state.mark_success()
            self._record(state.operation, "success")
            if state.attempts > 1:
                logger.info(f"{state.operation} succeeded after {state.attempts} attempts")
            return result

    def _record(self, operation: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_retry(operation, outcome)
