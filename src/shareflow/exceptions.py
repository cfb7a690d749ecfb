"""
shareflow exception hierarchy.

All pipeline exceptions inherit from ShareflowError, so a consumer loop can
catch any pipeline failure with a single base class while each stage still
handles the kinds it owns.

Hierarchy::

    ShareflowError
    ├── ConfigurationError        - config loading, parsing, validation
    ├── EnvelopeError             - queue payload cannot be decoded
    ├── ListingError              - provider failed to list a folder
    │   └── ProviderNotFoundError - no provider registered for a source
    ├── TransientIOError          - recoverable I/O failure, retried
    │   ├── DownloadError         - provider download failed
    │   ├── UploadError           - storage put failed
    │   └── CatalogWriteError     - catalog insert failed
    ├── DuplicateRecordError      - catalog rejected a reused storage locator
    ├── TerminalTaskError         - retry budget exhausted
    └── QueueUnavailableError     - queue transport connection lost
"""

from __future__ import annotations


class ShareflowError(Exception):
    """Base exception for all shareflow errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(ShareflowError):
    """Raised when configuration loading, parsing, or validation fails."""


# --- Queue envelopes ---------------------------------------------------------


class EnvelopeError(ShareflowError):
    """Raised when a queue payload is not a valid job or task envelope."""


# --- Listing -----------------------------------------------------------------


class ListingError(ShareflowError):
    """Raised when a provider cannot list the files of a folder."""

    def __init__(self, message: str, *, folder_id: str | None = None, source: str | None = None) -> None:
        super().__init__(message, details={"folder_id": folder_id, "source": source})
        self.folder_id = folder_id
        self.source = source


class ProviderNotFoundError(ListingError):
    """Raised when no provider is registered for a source name."""

    def __init__(self, source: str) -> None:
        super().__init__(f"No source provider registered for '{source}'", source=source)


# --- Transient I/O -----------------------------------------------------------


class TransientIOError(ShareflowError):
    """Raised for download, upload or catalog failures believed recoverable."""


class DownloadError(TransientIOError):
    """Raised when a provider download fails."""


class UploadError(TransientIOError):
    """Raised when the storage backend rejects or fails a put."""


class CatalogWriteError(TransientIOError):
    """Raised when a catalog insert fails for a reason other than uniqueness."""


# --- Terminal ----------------------------------------------------------------


class DuplicateRecordError(ShareflowError):
    """Raised when the catalog already holds a record with the same storage locator."""

    def __init__(self, storage_locator: str) -> None:
        super().__init__(
            f"Catalog already holds a record for {storage_locator}",
            details={"storage_locator": storage_locator},
        )
        self.storage_locator = storage_locator


class TerminalTaskError(ShareflowError):
    """Raised when an operation failed and no further attempts will be made."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}",
            details={"operation": operation, "attempts": attempts, "last_error": repr(last_error)},
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error

    @property
    def root_error(self) -> BaseException:
        """The innermost error when terminal failures are nested."""
        error: BaseException = self.last_error
        while isinstance(error, TerminalTaskError):
            error = error.last_error
        return error


# --- Queue transport ---------------------------------------------------------


class QueueUnavailableError(ShareflowError):
    """Raised when the queue transport cannot be reached."""
