"""
Builds pipeline components from configuration.

Every collaborator is constructed here and injected; nothing in the pipeline
creates its own clients.
"""

from __future__ import annotations

from shareflow.catalog.sql import SQLCatalog
from shareflow.config.loader import Config
from shareflow.exceptions import ConfigurationError
from shareflow.models import FileTask, FolderJob
from shareflow.observability.metrics import MetricsRegistry, get_metrics_registry
from shareflow.pipeline.expansion import FolderExpansionStage
from shareflow.pipeline.worker import FileWorker
from shareflow.providers.base import ProviderRegistry
from shareflow.providers.dropbox import DropboxProvider
from shareflow.providers.google_drive import GoogleDriveProvider
from shareflow.providers.http import HTTPClient
from shareflow.queues.base import DeliveryMode, QueueBackend, WorkQueue
from shareflow.queues.memory import InMemoryQueueBackend
from shareflow.queues.redis import RedisQueueBackend
from shareflow.retry.manager import RetryManager
from shareflow.retry.policy import CATALOG_RETRY_POLICY, TASK_RETRY_POLICY, RetryPolicy
from shareflow.retry.sink import FailedTaskSink
from shareflow.storage.base import StorageBackend
from shareflow.storage.filesystem import FilesystemStorageBackend
from shareflow.storage.s3 import S3StorageBackend


def _optional_int(value) -> int | None:
    if value in (None, ""):
        return None
    return int(value)


def build_queue_backend(config: Config) -> QueueBackend:
    backend = config.get("queues.backend", "redis")
    if backend == "memory":
        return InMemoryQueueBackend()
    if backend == "redis":
        return RedisQueueBackend(url=config.get("redis.url"))
    raise ConfigurationError(f"Unknown queue backend '{backend}'")


def _work_queue(config: Config, backend: QueueBackend, name_key: str, decode) -> WorkQueue:
    return WorkQueue(
        backend,
        config.get(name_key),
        decode,
        delivery=DeliveryMode(config.get("queues.delivery", DeliveryMode.AT_MOST_ONCE.value)),
        visibility_timeout=float(config.get("queues.visibility_timeout", 300)),
        reclaim_interval=float(config.get("queues.reclaim_interval", 30)),
    )


def build_job_queue(config: Config, backend: QueueBackend) -> WorkQueue[FolderJob]:
    return _work_queue(config, backend, "queues.jobs", FolderJob.from_json)


def build_task_queue(config: Config, backend: QueueBackend) -> WorkQueue[FileTask]:
    return _work_queue(config, backend, "queues.tasks", FileTask.from_json)


def build_providers(config: Config) -> ProviderRegistry:
    def client() -> HTTPClient:
        return HTTPClient(
            timeout=int(config.get("providers.timeout", 120)),
            rate_limit=_optional_int(config.get("providers.rate_limit")),
        )

    return ProviderRegistry(
        [
            GoogleDriveProvider(config.get("providers.google_drive.api_key"), client=client()),
            DropboxProvider(config.get("providers.dropbox.access_token"), client=client()),
        ]
    )


def build_storage(config: Config) -> StorageBackend:
    backend = config.get("storage.backend", "s3")
    if backend == "filesystem":
        return FilesystemStorageBackend(config.get("storage.root_path", "data/storage"))
    if backend == "s3":
        return S3StorageBackend(
            region=config.get("storage.region"),
            endpoint_url=config.get("storage.endpoint_url"),
            access_key_id=config.get("storage.access_key_id"),
            secret_access_key=config.get("storage.secret_access_key"),
            session_token=config.get("storage.session_token"),
        )
    raise ConfigurationError(f"Unknown storage backend '{backend}'")


def build_catalog(config: Config) -> SQLCatalog:
    section = config.section("catalog")
    return SQLCatalog(
        section.get("backend", "duckdb"),
        path=section.get("path") or ":memory:",
        host=section.get("host"),
        port=_optional_int(section.get("port")),
        user=section.get("user"),
        password=section.get("password"),
        database=section.get("database"),
    )


def build_retry_policies(config: Config) -> tuple[RetryPolicy, RetryPolicy]:
    """(task policy, catalog policy)"""
    try:
        return (
            RetryPolicy.from_config(config.section("retry.task"), TASK_RETRY_POLICY),
            RetryPolicy.from_config(config.section("retry.catalog"), CATALOG_RETRY_POLICY),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid retry configuration: {e}") from e


def build_metrics(config: Config) -> MetricsRegistry | None:
    if not config.get("metrics.enabled", False):
        return None
    metrics = get_metrics_registry()
    metrics.enable()
    return metrics


def build_failed_sink(
    config: Config, backend: QueueBackend, metrics: MetricsRegistry | None = None
) -> FailedTaskSink:
    queue = config.get("failed_tasks.queue")
    return FailedTaskSink(backend if queue else None, queue=queue or None, metrics=metrics)


def build_expansion_stage(
    config: Config,
    backend: QueueBackend,
    providers: ProviderRegistry,
    metrics: MetricsRegistry | None = None,
) -> FolderExpansionStage:
    return FolderExpansionStage(
        build_job_queue(config, backend),
        build_task_queue(config, backend),
        providers,
        metrics=metrics,
        pop_timeout=float(config.get("queues.pop_timeout", 5)),
        reconnect_delay=float(config.get("queues.reconnect_delay", 5)),
    )


def build_worker(
    config: Config,
    backend: QueueBackend,
    providers: ProviderRegistry,
    storage: StorageBackend,
    catalog: SQLCatalog,
    metrics: MetricsRegistry | None = None,
) -> FileWorker:
    task_policy, catalog_policy = build_retry_policies(config)
    return FileWorker(
        build_task_queue(config, backend),
        providers,
        storage,
        catalog,
        bucket=config.get("storage.bucket"),
        retry=RetryManager(metrics=metrics),
        task_policy=task_policy,
        catalog_policy=catalog_policy,
        attempt_budget=_optional_int(config.get("retry.task_attempt_budget")),
        failed_sink=build_failed_sink(config, backend, metrics),
        metrics=metrics,
        pop_timeout=float(config.get("queues.pop_timeout", 5)),
        reconnect_delay=float(config.get("queues.reconnect_delay", 5)),
    )
