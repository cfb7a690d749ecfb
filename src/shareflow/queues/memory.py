"""
In-memory queue backend for testing.

Provides the same list semantics as the Redis backend inside one event loop,
so pipeline stages can be exercised without external services.

Example:
    from shareflow.queues import InMemoryQueueBackend

    backend = InMemoryQueueBackend()

    async with backend:
        await backend.push("image_task_queue", task.to_json())
        delivery = await backend.pop("image_task_queue", timeout=1)
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import defaultdict, deque
from collections.abc import Callable

from shareflow.exceptions import QueueUnavailableError
from shareflow.queues.base import Delivery, QueueBackend


class InMemoryQueueBackend(QueueBackend):
    """
    In-memory queue backend.

    Features:
    - No external dependencies
    - Blocking pop with timeout, safe for many concurrent consumers
    - Leases with an injectable clock for at-least-once tests
    - ``available`` switch to simulate a lost transport
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.available = True
        self._queues: dict[str, deque[str]] = defaultdict(deque)
        # receipt -> (queue, payload, deadline)
        self._in_flight: dict[str, tuple[str, str, float]] = {}
        self._condition: asyncio.Condition | None = None
        self._connected = False

    @property
    def condition(self) -> asyncio.Condition:
        # Created lazily so the backend can be built outside a running loop.
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    async def connect(self) -> None:
        self._check_available("connect")
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def _check_available(self, operation: str) -> None:
        if not self.available:
            raise QueueUnavailableError(f"In-memory queue unavailable during {operation}")

    async def push(self, queue: str, payload: str) -> None:
        self._check_available("push")
        async with self.condition:
            self._queues[queue].append(payload)
            self.condition.notify_all()

    async def pop(self, queue: str, timeout: float, *, lease: float | None = None) -> Delivery | None:
        self._check_available("pop")
        async with self.condition:
            try:
                await asyncio.wait_for(self.condition.wait_for(lambda: bool(self._queues[queue])), timeout)
            except TimeoutError:
                return None
            payload = self._queues[queue].popleft()

        if lease is None:
            return Delivery(queue=queue, payload=payload)

        receipt = uuid.uuid4().hex
        self._in_flight[receipt] = (queue, payload, self.clock() + lease)
        return Delivery(queue=queue, payload=payload, receipt=receipt)

    async def ack(self, delivery: Delivery) -> None:
        self._check_available("ack")
        if delivery.receipt is not None:
            self._in_flight.pop(delivery.receipt, None)

    async def reclaim_expired(self, queue: str) -> int:
        self._check_available("reclaim")
        now = self.clock()
        expired = [
            receipt
            for receipt, (name, _payload, deadline) in self._in_flight.items()
            if name == queue and deadline <= now
        ]
        if not expired:
            return 0

        async with self.condition:
            for receipt in expired:
                _name, payload, _deadline = self._in_flight.pop(receipt)
                self._queues[queue].appendleft(payload)
            self.condition.notify_all()
        return len(expired)

    async def length(self, queue: str) -> int:
        return len(self._queues[queue])

    async def peek(self, queue: str, limit: int | None = None) -> list[str]:
        items = list(self._queues[queue])
        return items if limit is None else items[: max(limit, 0)]

    async def pop_nowait(self, queue: str) -> str | None:
        self._check_available("pop")
        if not self._queues[queue]:
            return None
        return self._queues[queue].popleft()

    def in_flight(self, queue: str) -> int:
        """Leased deliveries of ``queue`` not yet acked."""
        return sum(1 for name, _payload, _deadline in self._in_flight.values() if name == queue)
