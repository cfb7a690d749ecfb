"""
Shared fixtures and in-process fakes for pipeline tests.
"""

import pytest

from shareflow.catalog.sql import SQLCatalog
from shareflow.exceptions import UploadError
from shareflow.models import DownloadedFile, DownloadHint, FileDescriptor
from shareflow.providers.base import ProviderRegistry, SourceProvider
from shareflow.queues.memory import InMemoryQueueBackend
from shareflow.retry.manager import RetryManager
from shareflow.storage.base import StorageBackend


class FakeProvider(SourceProvider):
    """Provider serving canned listings and bytes."""

    def __init__(
        self,
        source: str = "google_drive",
        *,
        folders: dict[str, list[FileDescriptor]] | None = None,
        content: bytes = b"\x89PNG fake image",
        mime_type: str | None = "image/png",
        size: int | None = None,
        listing_error: Exception | None = None,
        download_errors: list[Exception] | None = None,
    ):
        self.source = source
        self.folders = folders or {}
        self.content = content
        self.mime_type = mime_type
        self.size = size
        self.listing_error = listing_error
        self.download_errors = list(download_errors or [])
        self.list_calls: list[tuple[str, str | None]] = []
        self.downloads: list[tuple[str, DownloadHint]] = []
        self.closed = False

    async def list_files(self, folder_id, folder_reference=None):
        self.list_calls.append((folder_id, folder_reference))
        if self.listing_error is not None:
            raise self.listing_error
        return list(self.folders.get(folder_id, []))

    async def download_file(self, file_id, hint):
        self.downloads.append((file_id, hint))
        if self.download_errors:
            raise self.download_errors.pop(0)
        size = self.size if self.size is not None else len(self.content)
        return DownloadedFile(data=self.content, mime_type=self.mime_type, size=size)

    async def close(self):
        self.closed = True


class MemoryStorage(StorageBackend):
    """Object store kept in a dict, with s3-style locators."""

    def __init__(self, put_errors: list[Exception] | None = None):
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.put_errors = list(put_errors or [])
        self.puts = 0

    def ensure_bucket(self, name):
        self.buckets.add(name)

    def put(self, bucket, key, data, content_type):
        self.puts += 1
        if self.put_errors:
            raise self.put_errors.pop(0)
        if bucket not in self.buckets:
            raise UploadError(f"No such bucket: {bucket}")
        self.objects[(bucket, key)] = (data, content_type)
        return f"s3://{bucket}/{key}"


class RecordingSleep:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def backend():
    return InMemoryQueueBackend()


@pytest.fixture
def catalog():
    catalog = SQLCatalog("duckdb", path=":memory:")
    catalog.initialize()
    yield catalog
    catalog.close()


@pytest.fixture
def storage():
    storage = MemoryStorage()
    storage.ensure_bucket("images")
    return storage


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def retry_manager(sleep):
    return RetryManager(sleep=sleep)


@pytest.fixture
def drive_provider():
    return FakeProvider("google_drive")


@pytest.fixture
def providers(drive_provider):
    return ProviderRegistry([drive_provider, FakeProvider("dropbox")])
