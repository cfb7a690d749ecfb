"""
Queue envelopes and catalog records.

FolderJob and FileTask travel through the queues as JSON objects; the
decoders accept the legacy ``folder_url`` key that older intake services
still emit for ``folder_reference``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from shareflow.exceptions import EnvelopeError

SOURCE_GOOGLE_DRIVE = "google_drive"
SOURCE_DROPBOX = "dropbox"

IMAGE_MIME_PREFIX = "image/"
DEFAULT_IMAGE_MIME = "image/jpeg"


def is_image_mime(mime_type: str | None) -> bool:
    """True for ``image/*`` MIME types."""
    return bool(mime_type) and mime_type.startswith(IMAGE_MIME_PREFIX)


def _parse_envelope(payload: str | bytes, kind: str) -> dict[str, Any]:
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as e:
        raise EnvelopeError(f"{kind} payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise EnvelopeError(f"{kind} payload must be a JSON object, got {type(data).__name__}")
    return data


def _require(data: dict[str, Any], kind: str, *keys: str) -> None:
    missing = [k for k in keys if data.get(k) in (None, "")]
    if missing:
        raise EnvelopeError(f"{kind} envelope missing required field(s): {', '.join(missing)}", details=data)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class FolderJob:
    """A request to import every eligible file of one shared folder."""

    job_id: str
    folder_id: str
    folder_reference: str | None
    source: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FolderJob:
        _require(data, "FolderJob", "job_id", "folder_id", "source")
        return cls(
            job_id=str(data["job_id"]),
            folder_id=str(data["folder_id"]),
            folder_reference=data.get("folder_reference", data.get("folder_url")),
            source=str(data["source"]),
        )

    @classmethod
    def from_json(cls, payload: str | bytes) -> FolderJob:
        return cls.from_dict(_parse_envelope(payload, "FolderJob"))


@dataclass(frozen=True)
class FileDescriptor:
    """One entry of a provider folder listing."""

    id: str
    name: str
    mime_type: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class FileTask:
    """
    One file scheduled for ingestion.

    ``file_id``, ``source``, ``job_id`` and ``folder_id`` are authoritative.
    ``mime_type`` and ``file_size`` are hints copied from the listing; the
    worker prefers what the provider reports at download time.
    """

    job_id: str
    folder_id: str
    folder_reference: str | None
    file_id: str
    file_name: str
    mime_type: str | None
    source: str
    file_size: int | None = None

    @classmethod
    def from_descriptor(cls, job: FolderJob, descriptor: FileDescriptor) -> FileTask:
        return cls(
            job_id=job.job_id,
            folder_id=job.folder_id,
            folder_reference=job.folder_reference,
            file_id=descriptor.id,
            file_name=descriptor.name,
            mime_type=descriptor.mime_type or DEFAULT_IMAGE_MIME,
            source=job.source,
            file_size=_optional_int(descriptor.size),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileTask:
        _require(data, "FileTask", "job_id", "folder_id", "file_id", "file_name", "source")
        return cls(
            job_id=str(data["job_id"]),
            folder_id=str(data["folder_id"]),
            folder_reference=data.get("folder_reference", data.get("folder_url")),
            file_id=str(data["file_id"]),
            file_name=str(data["file_name"]),
            mime_type=data.get("mime_type"),
            source=str(data["source"]),
            file_size=_optional_int(data.get("file_size")),
        )

    @classmethod
    def from_json(cls, payload: str | bytes) -> FileTask:
        return cls.from_dict(_parse_envelope(payload, "FileTask"))


@dataclass(frozen=True)
class DownloadHint:
    """Addressing details a provider may need besides the file id."""

    folder_reference: str | None = None
    file_name: str | None = None


@dataclass
class DownloadedFile:
    """Bytes returned by a provider plus what the provider says about them."""

    data: bytes
    mime_type: str | None = None
    size: int | None = None


@dataclass
class MetadataRecord:
    """
    A catalog row describing one ingested file.

    ``provider_id`` is the file id at the source; the catalog stores it in the
    column matching ``source`` (``google_drive_id`` or ``dropbox_id``).
    """

    name: str
    provider_id: str
    size: int
    mime_type: str
    storage_locator: str
    source: str
    id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def google_drive_id(self) -> str | None:
        return self.provider_id if self.source == SOURCE_GOOGLE_DRIVE else None

    @property
    def dropbox_id(self) -> str | None:
        return self.provider_id if self.source == SOURCE_DROPBOX else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "google_drive_id": self.google_drive_id,
            "dropbox_id": self.dropbox_id,
            "size": self.size,
            "mime_type": self.mime_type,
            "storage_path": self.storage_locator,
            "source": self.source,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class CatalogPage:
    """One page of catalog rows plus the total matching the filter."""

    rows: list[MetadataRecord]
    total: int
