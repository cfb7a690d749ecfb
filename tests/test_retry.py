"""
Tests for the retry framework: policy, manager, attempt budget.
"""

import pytest

from shareflow.exceptions import (
    CatalogWriteError,
    DownloadError,
    DuplicateRecordError,
    ProviderNotFoundError,
    TerminalTaskError,
)
from shareflow.retry import (
    CATALOG_RETRY_POLICY,
    NO_RETRY_POLICY,
    TASK_RETRY_POLICY,
    AttemptBudget,
    RetryManager,
    RetryPolicy,
    RetryState,
)


class TestRetryPolicy:
    """Tests for RetryPolicy configuration."""

    def test_default_values(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.initial_delay == 5.0
        assert policy.exponential_base == 2.0
        assert policy.jitter is False
        assert policy.non_retryable_exceptions == (DuplicateRecordError,)

    def test_validation_max_attempts(self):
        with pytest.raises(ValueError, match="max_attempts must be >= 1"):
            RetryPolicy(max_attempts=0)

    def test_validation_initial_delay(self):
        with pytest.raises(ValueError, match="initial_delay must be >= 0"):
            RetryPolicy(initial_delay=-1)

    def test_validation_max_delay(self):
        with pytest.raises(ValueError, match="max_delay must be >= initial_delay"):
            RetryPolicy(initial_delay=10.0, max_delay=5.0)

    def test_validation_exponential_base(self):
        with pytest.raises(ValueError, match="exponential_base must be >= 1.0"):
            RetryPolicy(exponential_base=0.5)

    def test_should_retry_counts_total_executions(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(Exception("boom"), attempt=1) is True
        assert policy.should_retry(Exception("boom"), attempt=2) is True
        assert policy.should_retry(Exception("boom"), attempt=3) is False

    def test_duplicate_never_retried(self):
        policy = RetryPolicy(max_attempts=10)
        assert policy.should_retry(DuplicateRecordError("s3://images/a"), attempt=1) is False

    def test_retryable_filter(self):
        assert CATALOG_RETRY_POLICY.should_retry(CatalogWriteError("locked"), attempt=1) is True
        assert CATALOG_RETRY_POLICY.should_retry(ValueError("bad"), attempt=1) is False

    def test_task_policy_does_not_retry_unknown_source(self):
        assert TASK_RETRY_POLICY.should_retry(ProviderNotFoundError("ftp"), attempt=1) is False

    def test_get_delay_exponential(self):
        policy = RetryPolicy(initial_delay=5.0, exponential_base=2.0)
        assert policy.get_delay(1) == 5.0
        assert policy.get_delay(2) == 10.0
        assert policy.get_delay(3) == 20.0

    def test_get_delay_constant_for_catalog_preset(self):
        assert CATALOG_RETRY_POLICY.get_delay(1) == 5.0
        assert CATALOG_RETRY_POLICY.get_delay(2) == 5.0

    def test_get_delay_max_cap(self):
        policy = RetryPolicy(initial_delay=1.0, max_delay=5.0)
        assert policy.get_delay(10) == 5.0

    def test_get_delay_jitter_bounds(self):
        policy = RetryPolicy(initial_delay=10.0, jitter=True)
        delays = [policy.get_delay(1) for _ in range(100)]
        assert all(7.5 <= d <= 12.5 for d in delays)

    def test_from_config_overrides_per_field(self):
        policy = RetryPolicy.from_config({"max_attempts": "5", "initial_delay": 1}, CATALOG_RETRY_POLICY)
        assert policy.max_attempts == 5
        assert policy.initial_delay == 1.0
        assert policy.exponential_base == 1.0
        assert policy.retryable_exceptions == CATALOG_RETRY_POLICY.retryable_exceptions

    def test_from_config_empty_section(self):
        assert RetryPolicy.from_config(None, TASK_RETRY_POLICY) == TASK_RETRY_POLICY


class TestRetryState:
    def test_records_attempts_and_delays(self):
        state = RetryState(operation="ingest")
        state.record_attempt(exception=DownloadError("timeout"))
        state.record_delay(5.0)
        state.record_attempt()
        state.mark_success()

        assert state.attempts == 2
        assert state.delays == [5.0]
        assert state.exceptions[0]["exception_type"] == "DownloadError"
        assert state.succeeded is True


class TestRetryManager:
    """Tests for RetryManager.execute."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, retry_manager, sleep):
        async def operation():
            return "ok"

        assert await retry_manager.execute(operation, policy=TASK_RETRY_POLICY) == "ok"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_backoff_delays_then_success(self, retry_manager, sleep):
        """Two failures then success waits D then 2D."""
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise DownloadError("flaky")
            return "ok"

        result = await retry_manager.execute(operation, policy=RetryPolicy(initial_delay=5.0))
        assert result == "ok"
        assert call_count == 3
        assert sleep.delays == [5.0, 10.0]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_terminal_error(self, retry_manager, sleep):
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            raise DownloadError("down")

        with pytest.raises(TerminalTaskError) as exc_info:
            await retry_manager.execute(operation, policy=TASK_RETRY_POLICY, operation="download")

        assert call_count == 3
        assert sleep.delays == [5.0, 10.0]
        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "download"
        assert isinstance(exc_info.value.last_error, DownloadError)

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, retry_manager, sleep):
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            raise DuplicateRecordError("s3://images/x")

        with pytest.raises(TerminalTaskError) as exc_info:
            await retry_manager.execute(operation, policy=TASK_RETRY_POLICY)

        assert call_count == 1
        assert sleep.delays == []
        assert isinstance(exc_info.value.root_error, DuplicateRecordError)

    @pytest.mark.asyncio
    async def test_no_retry_policy(self, retry_manager):
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            raise DownloadError("down")

        with pytest.raises(TerminalTaskError):
            await retry_manager.execute(operation, policy=NO_RETRY_POLICY)
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_passes_arguments(self, retry_manager):
        async def add(a, b, *, scale=1):
            return (a + b) * scale

        assert await retry_manager.execute(add, 1, 2, scale=10, policy=TASK_RETRY_POLICY) == 30

    @pytest.mark.asyncio
    async def test_nested_scopes_multiply(self, retry_manager):
        """Without a budget, outer x inner attempts run."""
        inner_calls = 0

        async def insert():
            nonlocal inner_calls
            inner_calls += 1
            raise CatalogWriteError("locked")

        async def unit():
            return await retry_manager.execute(insert, policy=CATALOG_RETRY_POLICY, operation="insert")

        with pytest.raises(TerminalTaskError):
            await retry_manager.execute(unit, policy=TASK_RETRY_POLICY, operation="unit")

        assert inner_calls == 9

    @pytest.mark.asyncio
    async def test_nested_duplicate_not_retried_by_outer(self, retry_manager, sleep):
        outer_calls = 0

        async def insert():
            raise DuplicateRecordError("s3://images/x")

        async def unit():
            nonlocal outer_calls
            outer_calls += 1
            return await retry_manager.execute(insert, policy=CATALOG_RETRY_POLICY)

        with pytest.raises(TerminalTaskError) as exc_info:
            await retry_manager.execute(unit, policy=TASK_RETRY_POLICY)

        assert outer_calls == 1
        assert sleep.delays == []
        assert isinstance(exc_info.value.root_error, DuplicateRecordError)

    @pytest.mark.asyncio
    async def test_budget_caps_nested_attempts(self, retry_manager):
        budget = AttemptBudget(4)
        outer_calls = 0
        inner_calls = 0

        async def insert():
            nonlocal inner_calls
            inner_calls += 1
            raise CatalogWriteError("locked")

        async def unit():
            nonlocal outer_calls
            outer_calls += 1
            return await retry_manager.execute(insert, policy=CATALOG_RETRY_POLICY, budget=budget)

        with pytest.raises(TerminalTaskError):
            await retry_manager.execute(unit, policy=TASK_RETRY_POLICY, budget=budget)

        assert budget.used == 4
        assert budget.exhausted is True
        assert outer_calls == 1
        assert inner_calls == 3


class TestAttemptBudget:
    def test_rejects_empty_budget(self):
        with pytest.raises(ValueError, match="attempt budget must be >= 1"):
            AttemptBudget(0)

    def test_remaining(self):
        budget = AttemptBudget(2)
        budget.consume()
        assert budget.remaining == 1
        budget.consume()
        assert budget.remaining == 0
        assert budget.exhausted is True


class TestRetryMetrics:
    @pytest.mark.asyncio
    async def test_records_outcomes(self, sleep):
        from shareflow.observability.metrics import MetricsRegistry

        metrics = MetricsRegistry()
        metrics.enable()
        manager = RetryManager(sleep=sleep, metrics=metrics)
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise DownloadError("flaky")
            return "ok"

        await manager.execute(operation, policy=TASK_RETRY_POLICY, operation="download")

        labels = {"operation": "download"}
        assert metrics.sample("shareflow_retry_attempts_total", {**labels, "outcome": "retry"}) == 1.0
        assert metrics.sample("shareflow_retry_attempts_total", {**labels, "outcome": "success"}) == 1.0
