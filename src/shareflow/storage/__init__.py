"""
Object storage backends.
"""

from shareflow.storage.base import KEY_PREFIX, StorageBackend, build_storage_key
from shareflow.storage.filesystem import FilesystemStorageBackend
from shareflow.storage.s3 import S3StorageBackend

__all__ = [
    "KEY_PREFIX",
    "StorageBackend",
    "build_storage_key",
    "FilesystemStorageBackend",
    "S3StorageBackend",
]
