"""
Local filesystem storage backend.

Buckets are directories under ``root_path``; locators are ``file://`` URIs.
"""

import os
from pathlib import Path

from shareflow.exceptions import UploadError
from shareflow.storage.base import StorageBackend


class FilesystemStorageBackend(StorageBackend):
    """Stores objects as files below a root directory."""

    def __init__(self, root_path: str | Path = "data/storage"):
        self.root_path = Path(root_path)

    def _resolve(self, *parts: str) -> Path:
        root_resolved = self.root_path.resolve()
        full_resolved = root_resolved.joinpath(*parts).resolve()
        try:
            full_resolved.relative_to(root_resolved)
        except ValueError as e:
            raise UploadError(
                f"Path traversal detected: '{'/'.join(parts)}' escapes root_path '{self.root_path}'"
            ) from e
        return full_resolved

    def ensure_bucket(self, name: str) -> None:
        try:
            self._resolve(name).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise UploadError(f"Cannot create bucket directory {name}: {e}") from e

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        path = self._resolve(bucket, key)
        tmp_path = path.with_name(path.name + ".part")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise UploadError(f"Failed to write {path}: {e}", details={"bucket": bucket, "key": key}) from e
        return path.as_uri()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(root_path='{self.root_path}')"
