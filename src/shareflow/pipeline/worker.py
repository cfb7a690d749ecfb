"""
File processing worker: download, upload, catalog insert.

The three steps run as one unit under the task retry policy; the insert has
its own catalog retry inside it. A task that exhausts its attempts is logged,
handed to the failed-task sink, and dropped.
"""

import asyncio

from shareflow.catalog.base import Catalog
from shareflow.exceptions import EnvelopeError, TerminalTaskError
from shareflow.models import DEFAULT_IMAGE_MIME, DownloadHint, FileTask, MetadataRecord, is_image_mime
from shareflow.observability.metrics import MetricsRegistry
from shareflow.observability.structured_logging import add_correlation_id
from shareflow.pipeline.loop import ConsumerLoop
from shareflow.providers.base import ProviderRegistry
from shareflow.queues.base import WorkQueue
from shareflow.retry.manager import AttemptBudget, RetryManager
from shareflow.retry.policy import CATALOG_RETRY_POLICY, TASK_RETRY_POLICY, RetryPolicy
from shareflow.retry.sink import FailedTaskEntry, FailedTaskSink
from shareflow.storage.base import StorageBackend, build_storage_key
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.pipeline.worker")

DEFAULT_BUCKET = "images"


def resolve_mime_type(provider_mime: str | None, task_mime: str | None) -> str:
    """Provider MIME type if it is an image type, else the task hint, else image/jpeg."""
    if is_image_mime(provider_mime):
        return provider_mime
    return task_mime or DEFAULT_IMAGE_MIME


def resolve_size(task_size: int | None, provider_size: int | None) -> int:
    """Task size when positive, else the provider size."""
    if task_size is not None and task_size > 0:
        return task_size
    return provider_size or 0


class FileWorker(ConsumerLoop):
    """
    Turns file tasks into stored objects and catalog records.

    Examples:
        >>> worker = FileWorker(tasks, providers, storage, catalog, bucket="images")
        >>> record = await worker.process(task)   # raises TerminalTaskError when abandoned
        >>> await worker.run()                    # until stop()
    """

    name = "file worker"

    def __init__(
        self,
        tasks: WorkQueue[FileTask],
        providers: ProviderRegistry,
        storage: StorageBackend,
        catalog: Catalog,
        *,
        bucket: str = DEFAULT_BUCKET,
        retry: RetryManager | None = None,
        task_policy: RetryPolicy = TASK_RETRY_POLICY,
        catalog_policy: RetryPolicy = CATALOG_RETRY_POLICY,
        attempt_budget: int | None = None,
        failed_sink: FailedTaskSink | None = None,
        metrics: MetricsRegistry | None = None,
        **loop_options,
    ):
        """
        Args:
            tasks: Queue the worker consumes
            providers: Source providers by name
            storage: Object store for the downloaded bytes
            catalog: Catalog receiving one record per ingested file
            bucket: Destination bucket
            retry: Retry manager (shared by both retry levels)
            task_policy: Policy for the whole download/upload/insert unit
            catalog_policy: Policy for the insert alone
            attempt_budget: Combined attempt cap across both levels per task;
                None keeps the levels independent
            failed_sink: Receives abandoned tasks (in-memory sink by default)
            metrics: Optional metrics registry
        """
        super().__init__(**loop_options)
        self.tasks = tasks
        self.providers = providers
        self.storage = storage
        self.catalog = catalog
        self.bucket = bucket
        self.retry = retry or RetryManager(metrics=metrics)
        self.task_policy = task_policy
        self.catalog_policy = catalog_policy
        self.attempt_budget = attempt_budget
        self.failed_sink = failed_sink or FailedTaskSink(metrics=metrics)
        self.metrics = metrics

    async def on_start(self) -> None:
        await asyncio.to_thread(self.storage.ensure_bucket, self.bucket)
        await asyncio.to_thread(self.catalog.initialize)
        await self.tasks.reclaim_expired()

    async def ingest(self, task: FileTask, budget: AttemptBudget | None = None) -> MetadataRecord:
        """One attempt at download -> upload -> insert."""
        provider = self.providers.get(task.source)
        downloaded = await provider.download_file(
            task.file_id, DownloadHint(folder_reference=task.folder_reference, file_name=task.file_name)
        )

        mime_type = resolve_mime_type(downloaded.mime_type, task.mime_type)
        size = resolve_size(task.file_size, downloaded.size or len(downloaded.data))
        key = build_storage_key(task.source, task.file_id, task.file_name)

        locator = await asyncio.to_thread(self.storage.put, self.bucket, key, downloaded.data, mime_type)
        logger.debug(f"Uploaded {task.file_name} to {locator}")

        record = MetadataRecord(
            name=task.file_name,
            provider_id=task.file_id,
            size=size,
            mime_type=mime_type,
            storage_locator=locator,
            source=task.source,
        )
        await self.retry.execute(
            asyncio.to_thread,
            self.catalog.insert,
            record,
            policy=self.catalog_policy,
            operation="catalog_insert",
            budget=budget,
        )
        return record

    async def process(self, task: FileTask) -> MetadataRecord:
        """
        Ingest one task under the task retry policy.

        Raises:
            TerminalTaskError: Attempts exhausted or a non-retryable failure
                (such as a duplicate storage locator)
        """
        budget = AttemptBudget(self.attempt_budget) if self.attempt_budget else None
        record = await self.retry.execute(
            self.ingest,
            task,
            budget,
            policy=self.task_policy,
            operation="ingest_file",
            budget=budget,
        )
        logger.info(f"Ingested {task.file_name} ({task.file_id}) as {record.storage_locator}")
        return record

    async def handle(self, task: FileTask) -> MetadataRecord | None:
        """Process one task; abandoned tasks go to the failed-task sink and return None."""
        with add_correlation_id(f"{task.job_id}/{task.file_id}"):
            logger.info(f"Processing image: {task.file_name} ({task.file_id})")
            try:
                if self.metrics is not None:
                    with self.metrics.time_file_task(task.source):
                        return await self.process(task)
                return await self.process(task)
            except TerminalTaskError as e:
                logger.error(f"Abandoning {task.file_name} ({task.file_id}): {e.root_error}")
                await self.failed_sink.add(FailedTaskEntry.from_error(task, e))
                return None

    async def run_once(self) -> bool:
        await self.tasks.reclaim_if_due()
        try:
            received = await self.tasks.get(timeout=self.pop_timeout)
        except EnvelopeError as e:
            logger.error(f"Dropping malformed file task: {e}")
            return False

        if received is None:
            await self.tasks.reclaim_expired()
            return False

        await self.handle(received.item)
        await self.tasks.ack(received)
        return True
