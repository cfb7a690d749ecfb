"""
Failed-task sink for file tasks that exhausted their retry budget.

Abandoned tasks are never redelivered automatically. The sink records them
so an operator can inspect and replay them (``shareflow failed replay``).
"""

import json
import time
import traceback
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any

from shareflow.exceptions import TerminalTaskError
from shareflow.models import FileTask
from shareflow.observability.metrics import MetricsRegistry
from shareflow.queues.base import QueueBackend
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.retry.sink")

DEFAULT_MAX_IN_MEMORY = 1000


@dataclass
class FailedTaskEntry:
    """One abandoned file task and why it was abandoned."""

    task: dict[str, Any]
    exception_type: str
    exception_message: str
    total_attempts: int = 1
    exception_traceback: str | None = None
    failed_at: float = field(default_factory=time.time)
    entry_id: str = field(default_factory=lambda: f"failed_{uuid.uuid4().hex[:16]}")

    @classmethod
    def from_error(cls, task: FileTask, error: BaseException) -> "FailedTaskEntry":
        cause = error.root_error if isinstance(error, TerminalTaskError) else error
        attempts = error.attempts if isinstance(error, TerminalTaskError) else 1
        return cls(
            task=task.to_dict(),
            exception_type=type(cause).__name__,
            exception_message=str(cause),
            total_attempts=attempts,
            exception_traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        )

    @property
    def file_task(self) -> FileTask:
        return FileTask.from_dict(self.task)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FailedTaskEntry":
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> "FailedTaskEntry":
        return cls.from_dict(json.loads(json_str))


class FailedTaskSink:
    """
    Records abandoned file tasks.

    Always logs. With a queue backend and queue name, entries are also pushed
    to that queue so they outlive the worker process; otherwise they are kept
    in memory, up to ``max_in_memory`` most recent entries.

    Examples:
        >>> sink = FailedTaskSink(backend, queue="image_task_failed")
        >>> await sink.add(FailedTaskEntry.from_error(task, error))
        >>> replayed = await sink.replay(backend, "image_task_queue")
    """

    def __init__(
        self,
        backend: QueueBackend | None = None,
        *,
        queue: str | None = None,
        metrics: MetricsRegistry | None = None,
        max_in_memory: int = DEFAULT_MAX_IN_MEMORY,
    ):
        self.backend = backend
        self.queue = queue
        self.metrics = metrics
        # oldest entries drop off once full
        self._in_memory: deque[FailedTaskEntry] = deque(maxlen=max_in_memory)

    @property
    def persistent(self) -> bool:
        return self.backend is not None and bool(self.queue)

    async def add(self, entry: FailedTaskEntry) -> str:
        """Record an abandoned task; returns the entry id."""
        task = entry.task
        logger.warning(
            f"Abandoned file task {task.get('file_name')} ({task.get('file_id')}) from job {task.get('job_id')} "
            f"after {entry.total_attempts} attempt(s) - {entry.exception_type}: {entry.exception_message}"
        )

        if self.persistent:
            await self.backend.push(self.queue, entry.to_json())
        else:
            self._in_memory.append(entry)

        if self.metrics is not None:
            self.metrics.record_failed_task()
        return entry.entry_id

    async def get_recent(self, limit: int = 10) -> list[FailedTaskEntry]:
        """Entries most recent first, without removing them."""
        if self.persistent:
            payloads = await self.backend.peek(self.queue, limit=None)
            entries = [FailedTaskEntry.from_json(p) for p in payloads]
        else:
            entries = list(self._in_memory)
        return sorted(entries, key=lambda e: e.failed_at, reverse=True)[:limit]

    async def replay(self, target: QueueBackend, task_queue: str, *, limit: int | None = None) -> int:
        """
        Move recorded tasks back onto the task queue, oldest first.

        Returns:
            Number of tasks replayed
        """
        replayed = 0
        while limit is None or replayed < limit:
            entry = await self._take_oldest()
            if entry is None:
                break
            await target.push(task_queue, entry.file_task.to_json())
            replayed += 1
            logger.info(f"Replayed failed task {entry.entry_id} ({entry.task.get('file_name')})")
        return replayed

    async def _take_oldest(self) -> FailedTaskEntry | None:
        if self.persistent:
            payload = await self.backend.pop_nowait(self.queue)
            return FailedTaskEntry.from_json(payload) if payload is not None else None
        if self._in_memory:
            return self._in_memory.popleft()
        return None
