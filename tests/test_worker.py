"""
Tests for the file processing worker.
"""

import asyncio

import pytest
from conftest import FakeProvider, MemoryStorage

from shareflow.exceptions import (
    CatalogWriteError,
    DownloadError,
    DuplicateRecordError,
    TerminalTaskError,
    UploadError,
)
from shareflow.models import FileTask
from shareflow.observability.metrics import MetricsRegistry
from shareflow.pipeline import FileWorker, resolve_mime_type, resolve_size
from shareflow.providers import ProviderRegistry
from shareflow.queues import DeliveryMode, InMemoryQueueBackend, WorkQueue
from shareflow.retry import NO_RETRY_POLICY, RetryManager, RetryPolicy
from shareflow.retry.sink import FailedTaskSink

TASK_QUEUE = "image_task_queue"


def make_task(file_id: str = "a", file_name: str = "a.png", **overrides) -> FileTask:
    fields = {
        "job_id": "J1",
        "folder_id": "F1",
        "folder_reference": "https://drive.google.com/drive/folders/F1",
        "file_id": file_id,
        "file_name": file_name,
        "mime_type": "image/png",
        "source": "google_drive",
        "file_size": None,
    }
    fields.update(overrides)
    return FileTask(**fields)


class FlakyCatalog:
    """Wraps a catalog and fails the first ``failures`` inserts."""

    def __init__(self, inner, failures: int):
        self.inner = inner
        self.failures = failures
        self.inserts = 0

    def initialize(self):
        self.inner.initialize()

    def insert(self, record):
        self.inserts += 1
        if self.inserts <= self.failures:
            raise CatalogWriteError("database is locked")
        return self.inner.insert(record)

    def query(self, *args, **kwargs):
        return self.inner.query(*args, **kwargs)


@pytest.fixture
def tasks(backend):
    return WorkQueue(backend, TASK_QUEUE, FileTask.from_json)


@pytest.fixture
def worker(tasks, providers, storage, catalog, retry_manager):
    return FileWorker(tasks, providers, storage, catalog, retry=retry_manager, pop_timeout=0.01)


class TestResolution:
    def test_provider_image_mime_wins(self):
        assert resolve_mime_type("image/webp", "image/png") == "image/webp"

    def test_non_image_provider_mime_falls_back_to_task(self):
        assert resolve_mime_type("application/octet-stream", "image/png") == "image/png"

    def test_default_mime(self):
        assert resolve_mime_type(None, None) == "image/jpeg"

    def test_positive_task_size_wins(self):
        assert resolve_size(2048, 100) == 2048

    @pytest.mark.parametrize("task_size", [None, 0])
    def test_provider_size_when_task_size_missing(self, task_size):
        assert resolve_size(task_size, 100) == 100

    def test_size_defaults_to_zero(self):
        assert resolve_size(None, None) == 0


class TestProcess:
    @pytest.mark.asyncio
    async def test_ingests_file(self, worker, storage, catalog, drive_provider):
        record = await worker.process(make_task())

        assert record.storage_locator == "s3://images/images/google_drive/a/a.png"
        assert storage.objects[("images", "images/google_drive/a/a.png")] == (drive_provider.content, "image/png")

        page = catalog.query()
        assert page.total == 1
        row = page.rows[0]
        assert row.name == "a.png"
        assert row.provider_id == "a"
        assert row.google_drive_id == "a"
        assert row.dropbox_id is None
        assert row.size == len(drive_provider.content)
        assert row.source == "google_drive"

    @pytest.mark.asyncio
    async def test_passes_download_hint(self, worker, drive_provider):
        await worker.process(make_task())
        file_id, hint = drive_provider.downloads[0]
        assert file_id == "a"
        assert hint.file_name == "a.png"
        assert hint.folder_reference == "https://drive.google.com/drive/folders/F1"

    @pytest.mark.asyncio
    async def test_task_size_preferred(self, worker, catalog):
        await worker.process(make_task(file_size=4096))
        assert catalog.query().rows[0].size == 4096

    @pytest.mark.asyncio
    async def test_provider_mime_preferred(self, tasks, storage, catalog, retry_manager):
        provider = FakeProvider("google_drive", mime_type="image/webp")
        worker = FileWorker(tasks, ProviderRegistry([provider]), storage, catalog, retry=retry_manager)

        record = await worker.process(make_task(mime_type="image/png"))
        assert record.mime_type == "image/webp"

    @pytest.mark.asyncio
    async def test_download_retried_with_backoff(self, tasks, storage, catalog, sleep):
        provider = FakeProvider("google_drive", download_errors=[DownloadError("timeout"), DownloadError("timeout")])
        worker = FileWorker(tasks, ProviderRegistry([provider]), storage, catalog, retry=RetryManager(sleep=sleep))

        await worker.process(make_task())

        assert len(provider.downloads) == 3
        assert sleep.delays == [5.0, 10.0]
        assert catalog.query().total == 1

    @pytest.mark.asyncio
    async def test_three_download_failures_abandon_task(self, tasks, storage, catalog, retry_manager):
        provider = FakeProvider("google_drive", download_errors=[DownloadError("timeout")] * 3)
        worker = FileWorker(tasks, ProviderRegistry([provider]), storage, catalog, retry=retry_manager)

        with pytest.raises(TerminalTaskError) as exc_info:
            await worker.process(make_task())

        assert isinstance(exc_info.value.root_error, DownloadError)
        assert catalog.query().total == 0
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_upload_failure_retried(self, tasks, providers, catalog, retry_manager):
        storage = MemoryStorage(put_errors=[UploadError("503 Slow Down")])
        storage.ensure_bucket("images")
        worker = FileWorker(tasks, providers, storage, catalog, retry=retry_manager)

        await worker.process(make_task())
        assert storage.puts == 2
        assert catalog.query().total == 1

    @pytest.mark.asyncio
    async def test_catalog_retry_nested_in_task_retry(self, tasks, providers, storage, catalog, sleep):
        flaky = FlakyCatalog(catalog, failures=2)
        worker = FileWorker(tasks, providers, storage, flaky, retry=RetryManager(sleep=sleep))

        await worker.process(make_task())

        assert flaky.inserts == 3
        assert storage.puts == 1
        assert sleep.delays == [5.0, 5.0]
        assert catalog.query().total == 1

    @pytest.mark.asyncio
    async def test_duplicate_is_terminal(self, worker, catalog, drive_provider):
        await worker.process(make_task())

        with pytest.raises(TerminalTaskError) as exc_info:
            await worker.process(make_task())

        assert isinstance(exc_info.value.root_error, DuplicateRecordError)
        assert len(drive_provider.downloads) == 2
        assert catalog.query().total == 1

    @pytest.mark.asyncio
    async def test_attempt_budget_caps_nested_attempts(self, tasks, providers, storage, catalog, retry_manager):
        flaky = FlakyCatalog(catalog, failures=100)
        worker = FileWorker(tasks, providers, storage, flaky, retry=retry_manager, attempt_budget=4)

        with pytest.raises(TerminalTaskError):
            await worker.process(make_task())

        # one task attempt plus three insert attempts
        assert flaky.inserts == 3
        assert storage.puts == 1

    @pytest.mark.asyncio
    async def test_without_budget_attempts_multiply(self, tasks, providers, storage, catalog, retry_manager):
        flaky = FlakyCatalog(catalog, failures=100)
        worker = FileWorker(tasks, providers, storage, flaky, retry=retry_manager)

        with pytest.raises(TerminalTaskError):
            await worker.process(make_task())

        assert flaky.inserts == 9
        assert storage.puts == 3

    @pytest.mark.asyncio
    async def test_unknown_source_not_retried(self, worker, drive_provider):
        with pytest.raises(TerminalTaskError):
            await worker.process(make_task(source="box"))
        assert drive_provider.downloads == []


class TestHandle:
    @pytest.mark.asyncio
    async def test_abandoned_task_goes_to_failed_sink(self, tasks, storage, catalog, retry_manager):
        provider = FakeProvider("google_drive", download_errors=[DownloadError("timeout")] * 3)
        sink = FailedTaskSink()
        worker = FileWorker(
            tasks, ProviderRegistry([provider]), storage, catalog, retry=retry_manager, failed_sink=sink
        )

        assert await worker.handle(make_task()) is None

        entries = await sink.get_recent()
        assert len(entries) == 1
        assert entries[0].exception_type == "DownloadError"
        assert entries[0].total_attempts == 3
        assert entries[0].file_task == make_task()

    @pytest.mark.asyncio
    async def test_records_metrics(self, tasks, providers, storage, catalog, retry_manager):
        metrics = MetricsRegistry()
        metrics.enable()
        worker = FileWorker(
            tasks,
            providers,
            storage,
            catalog,
            retry=retry_manager,
            task_policy=NO_RETRY_POLICY,
            failed_sink=FailedTaskSink(metrics=metrics),
            metrics=metrics,
        )

        await worker.handle(make_task())
        await worker.handle(make_task())

        labels = {"source": "google_drive"}
        assert metrics.sample("shareflow_file_tasks_total", {**labels, "outcome": "ingested"}) == 1.0
        assert metrics.sample("shareflow_file_tasks_total", {**labels, "outcome": "abandoned"}) == 1.0
        assert metrics.sample("shareflow_failed_tasks_total") == 1.0


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_consumes_one_task(self, worker, tasks, catalog):
        await tasks.put(make_task())

        assert await worker.run_once() is True
        assert await tasks.length() == 0
        assert catalog.query().total == 1

    @pytest.mark.asyncio
    async def test_timeout(self, worker):
        assert await worker.run_once() is False

    @pytest.mark.asyncio
    async def test_malformed_task_dropped(self, worker, backend, catalog):
        await backend.push(TASK_QUEUE, "not json")

        assert await worker.run_once() is False
        assert catalog.query().total == 0

    @pytest.mark.asyncio
    async def test_at_least_once_acks_after_handling(self, backend, providers, storage, catalog, retry_manager):
        tasks = WorkQueue(backend, TASK_QUEUE, FileTask.from_json, delivery=DeliveryMode.AT_LEAST_ONCE)
        worker = FileWorker(tasks, providers, storage, catalog, retry=retry_manager, pop_timeout=0.01)
        await tasks.put(make_task())

        assert await worker.run_once() is True
        assert backend.in_flight(TASK_QUEUE) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delivery", list(DeliveryMode))
    async def test_abandoned_task_is_not_requeued(self, backend, storage, catalog, retry_manager, sleep, delivery):
        provider = FakeProvider("google_drive", download_errors=[DownloadError("timeout")] * 3)
        tasks = WorkQueue(backend, TASK_QUEUE, FileTask.from_json, delivery=delivery)
        sink = FailedTaskSink()
        worker = FileWorker(
            tasks,
            ProviderRegistry([provider]),
            storage,
            catalog,
            retry=retry_manager,
            failed_sink=sink,
            pop_timeout=0.01,
        )
        await tasks.put(make_task())

        assert await worker.run_once() is True

        assert len(provider.downloads) == 3
        assert sleep.delays == [5.0, 10.0]
        assert await tasks.length() == 0
        assert backend.in_flight(TASK_QUEUE) == 0
        assert catalog.query().total == 0
        assert storage.objects == {}
        assert len(await sink.get_recent()) == 1
        assert await worker.run_once() is False

    @pytest.mark.asyncio
    async def test_busy_queue_redelivers_expired_leases(self, providers, storage, catalog, retry_manager):
        now = [1000.0]
        backend = InMemoryQueueBackend(clock=lambda: now[0])
        tasks = WorkQueue(
            backend,
            TASK_QUEUE,
            FileTask.from_json,
            delivery=DeliveryMode.AT_LEAST_ONCE,
            visibility_timeout=10,
            reclaim_interval=30,
            clock=lambda: now[0],
        )
        worker = FileWorker(tasks, providers, storage, catalog, retry=retry_manager, pop_timeout=0.01)
        await worker.on_start()

        await tasks.put(make_task("lost", "lost.png"))
        # taken by a consumer that never acks
        await tasks.get(timeout=0.01)
        for n in range(3):
            await tasks.put(make_task(f"f{n}", f"f{n}.png"))

        now[0] += 31
        for _ in range(4):
            assert await worker.run_once() is True

        assert sorted(r.name for r in catalog.query().rows) == ["f0.png", "f1.png", "f2.png", "lost.png"]
        assert backend.in_flight(TASK_QUEUE) == 0

    @pytest.mark.asyncio
    async def test_on_start_prepares_bucket_and_table(self, tasks, providers, catalog, retry_manager):
        storage = MemoryStorage()
        worker = FileWorker(tasks, providers, storage, catalog, bucket="photos", retry=retry_manager)

        await worker.on_start()
        assert "photos" in storage.buckets


class TestConcurrentWorkers:
    @pytest.mark.asyncio
    async def test_racing_workers_insert_once(self, tasks, providers, storage, catalog, retry_manager):
        """Two workers handed the same task leave exactly one catalog record."""
        policy = RetryPolicy(max_attempts=1)
        first = FileWorker(tasks, providers, storage, catalog, retry=retry_manager, task_policy=policy)
        second = FileWorker(tasks, providers, storage, catalog, retry=retry_manager, task_policy=policy)

        results = await asyncio.gather(first.handle(make_task()), second.handle(make_task()))

        assert sum(r is not None for r in results) == 1
        assert catalog.query().total == 1

    @pytest.mark.asyncio
    async def test_distinct_tasks_run_in_parallel(self, tasks, providers, storage, catalog, retry_manager):
        workers = [FileWorker(tasks, providers, storage, catalog, retry=retry_manager) for _ in range(3)]
        for n in range(6):
            await tasks.put(make_task(file_id=f"f{n}", file_name=f"f{n}.png"))

        async def consume(worker):
            while await worker.run_once():
                pass

        for worker in workers:
            worker.pop_timeout = 0.01
        await asyncio.gather(*(consume(w) for w in workers))

        assert catalog.query().total == 6
