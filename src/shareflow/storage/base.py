"""
Object storage interface.

Backends are synchronous (they wrap blocking SDKs); async callers run them
through ``asyncio.to_thread``.
"""

from abc import ABC, abstractmethod

from shareflow.exceptions import UploadError

KEY_PREFIX = "images"


def build_storage_key(source: str, file_id: str, file_name: str) -> str:
    """
    Deterministic object key for one provider file.

    The same (source, file_id, file_name) always maps to the same key, so
    reprocessing a task overwrites the object instead of creating another.
    """
    if not source or not file_id or not file_name:
        raise UploadError(
            "Storage key needs source, file_id and file_name",
            details={"source": source, "file_id": file_id, "file_name": file_name},
        )
    return f"{KEY_PREFIX}/{source}/{file_id}/{file_name}"


class StorageBackend(ABC):
    """Base class for object stores."""

    @abstractmethod
    def ensure_bucket(self, name: str) -> None:
        """Create the bucket if it does not exist yet."""
        ...

    @abstractmethod
    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        """
        Store ``data`` under ``key``, overwriting any existing object.

        Returns:
            Locator of the stored object

        Raises:
            UploadError: The store rejected or failed the write (transient)
        """
        ...

    def close(self) -> None:
        """Release client resources."""

    def __enter__(self) -> "StorageBackend":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
