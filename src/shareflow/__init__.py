"""
shareflow - Queue pipeline that imports images from shared folders.

A folder expansion stage turns one folder job into per-file tasks; a pool of
file workers downloads each file, stores it, and records it in a catalog.
"""

__version__ = "0.1.0"

from shareflow.exceptions import (
    CatalogWriteError,
    ConfigurationError,
    DownloadError,
    DuplicateRecordError,
    EnvelopeError,
    ListingError,
    ProviderNotFoundError,
    QueueUnavailableError,
    ShareflowError,
    TerminalTaskError,
    TransientIOError,
    UploadError,
)
from shareflow.models import (
    CatalogPage,
    DownloadedFile,
    DownloadHint,
    FileDescriptor,
    FileTask,
    FolderJob,
    MetadataRecord,
)
from shareflow.pipeline import FileWorker, FolderExpansionStage
from shareflow.retry import RetryManager, RetryPolicy

__all__ = [
    "__version__",
    # Envelopes and records
    "FolderJob",
    "FileTask",
    "FileDescriptor",
    "DownloadHint",
    "DownloadedFile",
    "MetadataRecord",
    "CatalogPage",
    # Stages
    "FolderExpansionStage",
    "FileWorker",
    # Retry
    "RetryPolicy",
    "RetryManager",
    # Exceptions
    "ShareflowError",
    "ConfigurationError",
    "EnvelopeError",
    "ListingError",
    "ProviderNotFoundError",
    "TransientIOError",
    "DownloadError",
    "UploadError",
    "CatalogWriteError",
    "DuplicateRecordError",
    "TerminalTaskError",
    "QueueUnavailableError",
]
