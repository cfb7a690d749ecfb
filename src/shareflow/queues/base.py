"""
Base queue backend interface.

Queues are named FIFO lists of string payloads. Producers push to the tail,
consumers block-pop from the head with a timeout that exists only so the
consumer loop can check for shutdown.

Two delivery modes:

- at-most-once (default): pop removes the item; a consumer crash loses it.
- at-least-once: pop moves the item to a processing list under a lease;
  ack() removes it, and reclaim_expired() returns items whose lease ran out
  to the head of the queue.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from shareflow.exceptions import EnvelopeError
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.queues")

T = TypeVar("T")


class DeliveryMode(str, Enum):
    """Queue delivery semantics."""
    AT_MOST_ONCE = "at_most_once"
    AT_LEAST_ONCE = "at_least_once"


@dataclass(frozen=True)
class Delivery:
    """
    One popped payload.

    ``receipt`` identifies this one delivery for ack(), unique per pop; it is
    None for at-most-once deliveries, which need no ack.
    """
    queue: str
    payload: str
    receipt: str | None = None

    @property
    def needs_ack(self) -> bool:
        return self.receipt is not None


def processing_key(queue: str) -> str:
    return f"{queue}:processing"


def leases_key(queue: str) -> str:
    return f"{queue}:leases"


class QueueBackend(ABC):
    """
    Abstract queue transport.

    Implementations:
    - RedisQueueBackend: Redis lists (RPUSH/BLPOP, BLMOVE for leases)
    - InMemoryQueueBackend: asyncio, single process (tests, local runs)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Establish the transport connection."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport connection."""
        ...

    @abstractmethod
    async def push(self, queue: str, payload: str) -> None:
        """Append a payload to the tail of ``queue``."""
        ...

    @abstractmethod
    async def pop(self, queue: str, timeout: float, *, lease: float | None = None) -> Delivery | None:
        """
        Block up to ``timeout`` seconds for the head of ``queue``.

        Args:
            queue: Queue name
            timeout: Seconds to block; None is returned on timeout
            lease: Visibility timeout in seconds for at-least-once delivery,
                None for at-most-once
        """
        ...

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Confirm a leased delivery so it is never redelivered."""
        ...

    @abstractmethod
    async def reclaim_expired(self, queue: str) -> int:
        """Return expired leased items to the head of ``queue``; returns how many."""
        ...

    @abstractmethod
    async def length(self, queue: str) -> int:
        ...

    @abstractmethod
    async def peek(self, queue: str, limit: int | None = None) -> list[str]:
        """Payloads from the head of ``queue`` without removing them."""
        ...

    @abstractmethod
    async def pop_nowait(self, queue: str) -> str | None:
        """Remove and return the head of ``queue`` without blocking."""
        ...

    async def __aenter__(self) -> QueueBackend:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()


@dataclass(frozen=True)
class Received(Generic[T]):
    """A decoded queue item plus the delivery it came from."""
    item: T
    delivery: Delivery


class WorkQueue(Generic[T]):
    """
    Typed view of one named queue.

    Encodes items with ``to_json`` on put and decodes them with ``decode`` on
    get, applying the queue's delivery mode.

    Example:
        tasks = WorkQueue(backend, "image_task_queue", FileTask.from_json)
        await tasks.put(task)
        received = await tasks.get(timeout=5)
        if received:
            ...
            await tasks.ack(received)
    """

    def __init__(
        self,
        backend: QueueBackend,
        name: str,
        decode: Callable[[str], T],
        *,
        delivery: DeliveryMode = DeliveryMode.AT_MOST_ONCE,
        visibility_timeout: float = 300.0,
        reclaim_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.name = name
        self.decode = decode
        self.delivery = DeliveryMode(delivery)
        self.visibility_timeout = visibility_timeout
        self.reclaim_interval = reclaim_interval
        self.clock = clock
        self._last_reclaim: float | None = None

    @property
    def lease(self) -> float | None:
        if self.delivery is DeliveryMode.AT_LEAST_ONCE:
            return self.visibility_timeout
        return None

    async def put(self, item: Any) -> None:
        await self.backend.push(self.name, item.to_json())

    async def get(self, timeout: float) -> Received[T] | None:
        """
        Pop and decode one item.

        Raises:
            EnvelopeError: The payload could not be decoded; the item has
                already been removed (and acked) so it is not redelivered.
        """
        delivery = await self.backend.pop(self.name, timeout, lease=self.lease)
        if delivery is None:
            return None
        try:
            item = self.decode(delivery.payload)
        except EnvelopeError:
            if delivery.needs_ack:
                await self.backend.ack(delivery)
            raise
        return Received(item=item, delivery=delivery)

    async def ack(self, received: Received[T]) -> None:
        if received.delivery.needs_ack:
            await self.backend.ack(received.delivery)

    async def reclaim_expired(self) -> int:
        if self.delivery is not DeliveryMode.AT_LEAST_ONCE:
            return 0
        self._last_reclaim = self.clock()
        reclaimed = await self.backend.reclaim_expired(self.name)
        if reclaimed:
            logger.warning(f"Redelivering {reclaimed} item(s) with expired leases on {self.name}")
        return reclaimed

    async def reclaim_if_due(self) -> int:
        """Sweep expired leases once ``reclaim_interval`` has passed since the last sweep."""
        if self.delivery is not DeliveryMode.AT_LEAST_ONCE:
            return 0
        if self._last_reclaim is not None and self.clock() - self._last_reclaim < self.reclaim_interval:
            return 0
        return await self.reclaim_expired()

    async def length(self) -> int:
        return await self.backend.length(self.name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', delivery='{self.delivery.value}')"
