"""
Retry framework: bounded retry with exponential backoff and a failed-task sink.
"""

from shareflow.retry.manager import AttemptBudget, RetryManager
from shareflow.retry.policy import (
    CATALOG_RETRY_POLICY,
    NO_RETRY_POLICY,
    TASK_RETRY_POLICY,
    RetryPolicy,
    RetryState,
)
from shareflow.retry.sink import FailedTaskEntry, FailedTaskSink

__all__ = [
    # Policy
    "RetryPolicy",
    "RetryState",
    "TASK_RETRY_POLICY",
    "CATALOG_RETRY_POLICY",
    "NO_RETRY_POLICY",
    # Manager
    "RetryManager",
    "AttemptBudget",
    # Failed-task sink
    "FailedTaskSink",
    "FailedTaskEntry",
]
