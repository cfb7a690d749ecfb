"""
Folder expansion stage: one FolderJob in, one FileTask per image file out.

A job whose folder cannot be listed is logged and abandoned. It is not
retried or requeued, and no status is kept for it.
"""

from shareflow.exceptions import EnvelopeError, ListingError
from shareflow.models import FileTask, FolderJob, is_image_mime
from shareflow.observability.metrics import MetricsRegistry
from shareflow.observability.structured_logging import add_correlation_id
from shareflow.pipeline.loop import ConsumerLoop
from shareflow.providers.base import ProviderRegistry
from shareflow.queues.base import WorkQueue
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.pipeline.expansion")


class FolderExpansionStage(ConsumerLoop):
    """
    Expands folder jobs into file tasks.

    Examples:
        >>> stage = FolderExpansionStage(jobs, tasks, providers)
        >>> await stage.expand(job)   # -> number of tasks enqueued
        >>> await stage.run()          # until stop()
    """

    name = "folder expansion stage"

    def __init__(
        self,
        jobs: WorkQueue[FolderJob],
        tasks: WorkQueue[FileTask],
        providers: ProviderRegistry,
        *,
        metrics: MetricsRegistry | None = None,
        **loop_options,
    ):
        super().__init__(**loop_options)
        self.jobs = jobs
        self.tasks = tasks
        self.providers = providers
        self.metrics = metrics

    async def expand(self, job: FolderJob) -> int:
        """
        List the job's folder and enqueue one FileTask per image file.

        Tasks are enqueued in listing order.

        Returns:
            Number of tasks enqueued

        Raises:
            ListingError: The folder could not be listed (includes unknown source)
        """
        provider = self.providers.get(job.source)
        descriptors = await provider.list_files(job.folder_id, job.folder_reference)

        enqueued = 0
        for descriptor in descriptors:
            if not is_image_mime(descriptor.mime_type):
                continue
            await self.tasks.put(FileTask.from_descriptor(job, descriptor))
            enqueued += 1
        return enqueued

    async def handle(self, job: FolderJob) -> int | None:
        """Expand one job; returns the task count, or None if the job was abandoned."""
        with add_correlation_id(job.job_id):
            logger.info(f"Processing folder job {job.job_id}: {job.source} folder {job.folder_id}")
            try:
                count = await self.expand(job)
            except ListingError as e:
                logger.error(f"Abandoning folder job {job.job_id}: {e}")
                self._record(job.source, "abandoned")
                return None

            logger.info(f"Queued {count} image task(s) for job {job.job_id}")
            self._record(job.source, "expanded", count)
            return count

    async def on_start(self) -> None:
        await self.jobs.reclaim_expired()

    async def run_once(self) -> bool:
        await self.jobs.reclaim_if_due()
        try:
            received = await self.jobs.get(timeout=self.pop_timeout)
        except EnvelopeError as e:
            logger.error(f"Dropping malformed folder job: {e}")
            return False

        if received is None:
            await self.jobs.reclaim_expired()
            return False

        await self.handle(received.item)
        await self.jobs.ack(received)
        return True

    def _record(self, source: str, outcome: str, count: int = 0) -> None:
        if self.metrics is not None:
            self.metrics.record_folder_job(source, outcome)
            self.metrics.record_tasks_enqueued(source, count)
