"""
Google Drive source provider (Drive v3 REST with an API key).

Without an API key, folders cannot be listed but public files can still be
downloaded through the ``uc?export=download`` link.
"""

import asyncio

import aiohttp

from shareflow.exceptions import DownloadError, ListingError
from shareflow.models import (
    SOURCE_GOOGLE_DRIVE,
    DownloadedFile,
    DownloadHint,
    FileDescriptor,
    is_image_mime,
)
from shareflow.providers.base import SourceProvider
from shareflow.providers.http import HTTPClient
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.providers.google_drive")

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
PUBLIC_DOWNLOAD_URL = "https://drive.google.com/uc"

LIST_FIELDS = "nextPageToken, files(id, name, mimeType, size)"
METADATA_FIELDS = "mimeType, size"
FALLBACK_MIME = "application/octet-stream"

_HTTP_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


def _is_interstitial(body: bytes) -> bool:
    # Large public files answer with an HTML virus-scan warning page
    return b"virus scan warning" in body.lower() or b"<html" in body[:500].lower()


def _to_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class GoogleDriveProvider(SourceProvider):
    """
    Lists and downloads image files of a shared Google Drive folder.

    Args:
        api_key: Drive API key; None disables listing
        client: HTTP client (a private one is created when omitted)
        page_size: Files per listing page
    """

    source = SOURCE_GOOGLE_DRIVE

    def __init__(self, api_key: str | None = None, *, client: HTTPClient | None = None, page_size: int = 1000):
        self.api_key = api_key or None
        self.client = client or HTTPClient()
        self.page_size = page_size
        if not self.api_key:
            logger.warning("Google Drive API key not set; folder listing is unavailable")

    async def list_files(self, folder_id: str, folder_reference: str | None = None) -> list[FileDescriptor]:
        if not self.api_key:
            raise ListingError(
                "Google Drive API key not configured", folder_id=folder_id, source=self.source
            )

        files: list[dict] = []
        page_token: str | None = None
        try:
            while True:
                page = await self.client.get_json(
                    f"{DRIVE_API_URL}/files",
                    params={
                        "q": f"'{folder_id}' in parents and mimeType contains 'image/' and trashed=false",
                        "fields": LIST_FIELDS,
                        "pageSize": self.page_size,
                        "pageToken": page_token,
                        "supportsAllDrives": True,
                        "includeItemsFromAllDrives": True,
                        "key": self.api_key,
                    },
                )
                files.extend(page.get("files") or [])
                page_token = page.get("nextPageToken")
                if not page_token:
                    break
        except _HTTP_ERRORS as e:
            raise ListingError(
                f"Failed to list Google Drive folder {folder_id}: {e}", folder_id=folder_id, source=self.source
            ) from e
        except ValueError as e:
            raise ListingError(
                f"Unreadable listing for Google Drive folder {folder_id}: {e}", folder_id=folder_id, source=self.source
            ) from e

        logger.info(f"Found {len(files)} image files in folder {folder_id}")
        return [
            FileDescriptor(id=f["id"], name=f.get("name") or f["id"], mime_type=f.get("mimeType"), size=_to_int(f.get("size")))
            for f in files
            if is_image_mime(f.get("mimeType"))
        ]

    async def download_file(self, file_id: str, hint: DownloadHint) -> DownloadedFile:
        try:
            if self.api_key:
                return await self._download_with_api(file_id)
            return await self._download_public(file_id)
        except _HTTP_ERRORS as e:
            raise DownloadError(
                f"Error downloading Google Drive file {file_id}: {e}",
                details={"file_id": file_id, "source": self.source},
            ) from e

    async def _download_with_api(self, file_id: str) -> DownloadedFile:
        url = f"{DRIVE_API_URL}/files/{file_id}"
        metadata = await self.client.get_json(
            url,
            params={"fields": METADATA_FIELDS, "supportsAllDrives": True, "key": self.api_key},
        )
        media = await self.client.request(
            "GET", url, params={"alt": "media", "supportsAllDrives": True, "key": self.api_key}
        )
        return DownloadedFile(
            data=media.body,
            mime_type=metadata.get("mimeType") or FALLBACK_MIME,
            size=_to_int(metadata.get("size")) or len(media.body),
        )

    async def _download_public(self, file_id: str) -> DownloadedFile:
        response = await self.client.request("GET", PUBLIC_DOWNLOAD_URL, params={"export": "download", "id": file_id})
        if _is_interstitial(response.body):
            logger.debug(f"Confirming download of {file_id} past the virus-scan page")
            response = await self.client.request(
                "GET", PUBLIC_DOWNLOAD_URL, params={"export": "download", "confirm": "t", "id": file_id}
            )
        body = response.body
        return DownloadedFile(data=body, mime_type=response.content_type or "image/jpeg", size=len(body))

    async def close(self) -> None:
        await self.client.close()
