"""
Prometheus metrics for the ingestion pipeline.

Usage:
    from shareflow.observability.metrics import get_metrics_registry

    metrics = get_metrics_registry()
    metrics.enable()
    metrics.start_http_server(port=9100)  # expose for Prometheus scraping
"""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    start_http_server,
)

from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.observability.metrics")


class MetricsRegistry:
    """
    Pipeline metrics in a dedicated CollectorRegistry.

    Recording is a no-op until enable() is called.
    """

    def __init__(self) -> None:
        self._enabled = False
        self._registry = CollectorRegistry()

        self._folder_jobs = Counter(
            "shareflow_folder_jobs_total",
            "Folder jobs handled by the expansion stage",
            ["source", "outcome"],  # outcome: expanded, abandoned
            registry=self._registry,
        )
        self._tasks_enqueued = Counter(
            "shareflow_file_tasks_enqueued_total",
            "File tasks emitted by the expansion stage",
            ["source"],
            registry=self._registry,
        )
        self._file_tasks = Counter(
            "shareflow_file_tasks_total",
            "File tasks handled by workers",
            ["source", "outcome"],  # outcome: ingested, abandoned
            registry=self._registry,
        )
        self._retries = Counter(
            "shareflow_retry_attempts_total",
            "Attempts made under a retry policy",
            ["operation", "outcome"],  # outcome: success, retry, exhausted
            registry=self._registry,
        )
        self._failed_tasks = Counter(
            "shareflow_failed_tasks_total",
            "File tasks handed to the failed-task sink",
            registry=self._registry,
        )
        self._task_duration = Histogram(
            "shareflow_task_duration_seconds",
            "Wall time to process one file task, retries included",
            ["source", "outcome"],
            registry=self._registry,
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
        )
        self._lock = threading.Lock()

    def enable(self) -> None:
        self._enabled = True
        logger.info("Metrics collection enabled")

    def disable(self) -> None:
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_folder_job(self, source: str, outcome: str) -> None:
        if self._enabled:
            self._folder_jobs.labels(source=source, outcome=outcome).inc()

    def record_tasks_enqueued(self, source: str, count: int) -> None:
        if self._enabled and count:
            self._tasks_enqueued.labels(source=source).inc(count)

    def record_file_task(self, source: str, outcome: str, duration: float | None = None) -> None:
        if not self._enabled:
            return
        self._file_tasks.labels(source=source, outcome=outcome).inc()
        if duration is not None:
            self._task_duration.labels(source=source, outcome=outcome).observe(duration)

    def record_retry(self, operation: str, outcome: str) -> None:
        if self._enabled:
            self._retries.labels(operation=operation, outcome=outcome).inc()

    def record_failed_task(self) -> None:
        if self._enabled:
            self._failed_tasks.inc()

    @contextmanager
    def time_file_task(self, source: str) -> Iterator[None]:
        """
        Time one file task and count its outcome.

        Usage:
            with metrics.time_file_task(task.source):
                await worker.process(task)
        """
        start_time = time.monotonic()
        outcome = "ingested"
        try:
            yield
        except Exception:
            outcome = "abandoned"
            raise
        finally:
            self.record_file_task(source, outcome, time.monotonic() - start_time)

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Read one sample value (for tests and the CLI)."""
        return self._registry.get_sample_value(name, labels or {})

    def start_http_server(self, port: int = 9100, addr: str = "") -> None:
        """Start an HTTP server for Prometheus scraping."""
        with self._lock:
            start_http_server(port=port, addr=addr, registry=self._registry)
        logger.info(f"Prometheus metrics server started on port {port}")

    def generate_prometheus_metrics(self) -> bytes:
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


_metrics_registry: MetricsRegistry | None = None


def get_metrics_registry() -> MetricsRegistry:
    """Process-wide metrics registry."""
    global _metrics_registry
    if _metrics_registry is None:
        _metrics_registry = MetricsRegistry()
    return _metrics_registry
