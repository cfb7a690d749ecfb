"""
Redis list queue backend.

Each queue is a Redis list: producers RPUSH, consumers BLPOP. At-least-once
delivery uses BLMOVE into ``<queue>:processing``, then swaps the moved payload
for a lease envelope ``{"r": receipt, "p": payload}`` and records the lease
deadline under that receipt in the sorted set ``<queue>:leases``. Every
delivery gets its own receipt, so a late ack from a consumer whose lease
expired cannot remove the entry of the consumer that received the item next.

Example:
    from shareflow.queues import RedisQueueBackend

    backend = RedisQueueBackend(url="redis://localhost:6379")

    async with backend:
        await backend.push("folder_import_queue", job.to_json())
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shareflow.exceptions import QueueUnavailableError
from shareflow.queues.base import Delivery, QueueBackend, leases_key, processing_key
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.queues.redis")

# Replaces one raw payload in the processing list with its lease envelope.
# Returns 0 when the raw payload is gone (reclaimed as an orphan meanwhile).
# KEYS: processing, leases  ARGV: payload, envelope, receipt, deadline
_LEASE_SCRIPT = """
if redis.call('LREM', KEYS[1], 1, ARGV[1]) == 0 then
    return 0
end
redis.call('RPUSH', KEYS[1], ARGV[2])
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('ZADD', KEYS[2], ARGV[4], ARGV[3])
return 1
"""

# Moves one processing entry back to the head of its queue, but only if it is
# still in the processing list (a concurrent ack wins).
# KEYS: processing, leases, queue  ARGV: entry, lease member, payload
_RECLAIM_SCRIPT = """
local removed = redis.call('LREM', KEYS[1], 1, ARGV[1])
redis.call('ZREM', KEYS[2], ARGV[2])
if removed > 0 then
    redis.call('LPUSH', KEYS[3], ARGV[3])
end
return removed
"""


def lease_envelope(receipt: str, payload: str) -> str:
    return json.dumps({"r": receipt, "p": payload}, separators=(",", ":"))


def open_envelope(entry: str) -> tuple[str, str] | None:
    """(receipt, payload) of a lease envelope, or None for a raw payload."""
    try:
        data = json.loads(entry)
    except ValueError:
        return None
    if isinstance(data, dict) and data.keys() == {"r", "p"}:
        return data["r"], data["p"]
    return None


class RedisQueueBackend(QueueBackend):
    """
    Redis list queue backend.

    Args:
        url: Redis connection URL (redis://localhost:6379)
        host: Redis host (alternative to url)
        port: Redis port (default 6379)
        db: Redis database number
        password: Redis password
        ssl: Enable SSL
        clock: Wall clock used for lease deadlines (default: time.time)
        orphan_lease: Lease granted to in-flight items found without one
    """

    def __init__(
        self,
        url: str | None = None,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
        ssl: bool = False,
        clock: Callable[[], float] = time.time,
        orphan_lease: float = 300.0,
    ):
        self.url = url
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.ssl = ssl
        self.clock = clock
        self.orphan_lease = orphan_lease
        self._client = None
        self._lease = None
        self._reclaim = None

    @property
    def address(self) -> str:
        return self.url or f"{self.host}:{self.port}"

    async def connect(self) -> None:
        """Connect to Redis and verify the connection with PING."""
        if self.url:
            self._client = aioredis.from_url(self.url, decode_responses=True)
        else:
            self._client = aioredis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                ssl=self.ssl,
                decode_responses=True,
            )

        async with self._translate_errors("connect"):
            await self._client.ping()
        self._lease = self._client.register_script(_LEASE_SCRIPT)
        self._reclaim = self._client.register_script(_RECLAIM_SCRIPT)
        logger.info(f"Connected to Redis at {self.address}")

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            self._lease = None
            self._reclaim = None
            logger.info("Disconnected from Redis")

    @asynccontextmanager
    async def _translate_errors(self, operation: str):
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise QueueUnavailableError(
                f"Redis {operation} failed at {self.address}: {e}",
                details={"operation": operation, "address": self.address},
            ) from e

    def _require_client(self):
        if not self._client:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._client

    async def push(self, queue: str, payload: str) -> None:
        client = self._require_client()
        async with self._translate_errors("push"):
            await client.rpush(queue, payload)

    async def pop(self, queue: str, timeout: float, *, lease: float | None = None) -> Delivery | None:
        client = self._require_client()
        if lease is None:
            async with self._translate_errors("pop"):
                result = await client.blpop([queue], timeout=timeout)
            if result is None:
                return None
            _key, payload = result
            return Delivery(queue=queue, payload=payload)

        async with self._translate_errors("pop"):
            payload = await client.blmove(queue, processing_key(queue), timeout, "LEFT", "RIGHT")
            if payload is None:
                return None
            receipt = uuid.uuid4().hex
            envelope = lease_envelope(receipt, payload)
            leased = await self._lease(
                keys=[processing_key(queue), leases_key(queue)],
                args=[payload, envelope, receipt, self.clock() + lease],
            )
        if not leased:
            logger.warning(f"Item popped from {queue} was reclaimed before its lease was recorded")
            return None
        return Delivery(queue=queue, payload=payload, receipt=envelope)

    async def ack(self, delivery: Delivery) -> None:
        if not delivery.needs_ack:
            return
        client = self._require_client()
        opened = open_envelope(delivery.receipt)
        lease_member = opened[0] if opened else delivery.receipt
        async with self._translate_errors("ack"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.lrem(processing_key(delivery.queue), 1, delivery.receipt)
                pipe.zrem(leases_key(delivery.queue), lease_member)
                await pipe.execute()

    async def reclaim_expired(self, queue: str) -> int:
        client = self._require_client()
        now = self.clock()
        reclaimed = 0
        async with self._translate_errors("reclaim"):
            in_flight = await client.lrange(processing_key(queue), 0, -1)
            for entry in in_flight:
                opened = open_envelope(entry)
                lease_member, payload = opened if opened else (entry, entry)
                deadline = await client.zscore(leases_key(queue), lease_member)
                if deadline is None:
                    # Moved but not yet leased; grant a full lease before requeueing.
                    await client.zadd(leases_key(queue), {lease_member: now + self.orphan_lease}, nx=True)
                    continue
                if deadline > now:
                    continue
                reclaimed += await self._reclaim(
                    keys=[processing_key(queue), leases_key(queue), queue],
                    args=[entry, lease_member, payload],
                )
        return reclaimed

    async def length(self, queue: str) -> int:
        client = self._require_client()
        async with self._translate_errors("length"):
            return await client.llen(queue)

    async def peek(self, queue: str, limit: int | None = None) -> list[str]:
        client = self._require_client()
        if limit is not None and limit <= 0:
            return []
        end = -1 if limit is None else limit - 1
        async with self._translate_errors("peek"):
            return await client.lrange(queue, 0, end)

    async def pop_nowait(self, queue: str) -> str | None:
        client = self._require_client()
        async with self._translate_errors("pop"):
            return await client.lpop(queue)

    def __repr__(self) -> str:
        return f"RedisQueueBackend(address='{self.address}')"
