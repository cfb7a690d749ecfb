"""
Work queues between pipeline stages.

Backends:
- RedisQueueBackend: Redis lists, shared by every process of the pipeline
- InMemoryQueueBackend: single process, for tests and local runs
"""

from shareflow.queues.base import (
    Delivery,
    DeliveryMode,
    QueueBackend,
    Received,
    WorkQueue,
    leases_key,
    processing_key,
)
from shareflow.queues.memory import InMemoryQueueBackend
from shareflow.queues.redis import RedisQueueBackend

__all__ = [
    "Delivery",
    "DeliveryMode",
    "QueueBackend",
    "Received",
    "WorkQueue",
    "leases_key",
    "processing_key",
    "InMemoryQueueBackend",
    "RedisQueueBackend",
]
