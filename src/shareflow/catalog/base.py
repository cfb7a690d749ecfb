"""
Catalog interface: the append-only table of ingested files.
"""

from abc import ABC, abstractmethod

from shareflow.models import CatalogPage, MetadataRecord

DEFAULT_PAGE_SIZE = 100


class Catalog(ABC):
    """
    Base class for metadata catalogs.

    Implementations are synchronous; async callers use ``asyncio.to_thread``.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Create the catalog table if it does not exist yet."""
        ...

    @abstractmethod
    def insert(self, record: MetadataRecord) -> str:
        """
        Append one record.

        Returns:
            The record id

        Raises:
            DuplicateRecordError: A record with the same storage locator exists
            CatalogWriteError: Any other write failure (transient)
        """
        ...

    @abstractmethod
    def query(self, source: str | None = None, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> CatalogPage:
        """Records newest first, optionally filtered by source."""
        ...

    def close(self) -> None:
        """Release the database connection."""

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
