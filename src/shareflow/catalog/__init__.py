"""
Metadata catalog of ingested files.
"""

from shareflow.catalog.base import DEFAULT_PAGE_SIZE, Catalog
from shareflow.catalog.sql import DEFAULT_TABLE, SUPPORTED_BACKENDS, SQLCatalog

__all__ = [
    "Catalog",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_TABLE",
    "SQLCatalog",
    "SUPPORTED_BACKENDS",
]
