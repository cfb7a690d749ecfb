"""
Dropbox source provider.

Listing a shared folder needs an access token (Dropbox API v2
``files/list_folder`` with ``shared_link``). Without one the provider lists
nothing and downloads through the public shared link.
"""

import asyncio
import json
import mimetypes

import aiohttp

from shareflow.exceptions import DownloadError, ListingError
from shareflow.models import SOURCE_DROPBOX, DownloadedFile, DownloadHint, FileDescriptor, is_image_mime
from shareflow.providers.base import SourceProvider
from shareflow.providers.http import HTTPClient
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.providers.dropbox")

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"
SHARE_URL = "https://www.dropbox.com/s"

_HTTP_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


def direct_download_url(file_id: str, shared_link: str | None) -> str:
    """Turn a Dropbox shared link into a direct-download link."""
    if not shared_link:
        return f"{SHARE_URL}/{file_id}?dl=1"
    if "?dl=0" in shared_link:
        return shared_link.replace("?dl=0", "?dl=1")
    if "?" in shared_link:
        return f"{shared_link}&dl=1"
    return f"{shared_link}?dl=1"


def guess_image_mime(name: str) -> str | None:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type if is_image_mime(mime_type) else None


class DropboxProvider(SourceProvider):
    """
    Lists and downloads image files of a Dropbox shared folder.

    Args:
        access_token: Dropbox API token; None disables listing
        client: HTTP client (a private one is created when omitted)
    """

    source = SOURCE_DROPBOX

    def __init__(self, access_token: str | None = None, *, client: HTTPClient | None = None):
        self.access_token = access_token or None
        self.client = client or HTTPClient()

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def list_files(self, folder_id: str, folder_reference: str | None = None) -> list[FileDescriptor]:
        if not self.access_token:
            logger.warning("Dropbox folder listing requires an access token. Returning empty list.")
            return []
        if not folder_reference:
            raise ListingError(
                "Dropbox listing needs the shared folder link", folder_id=folder_id, source=self.source
            )

        entries: list[dict] = []
        try:
            page = await self.client.post_json(
                f"{API_URL}/files/list_folder",
                {"path": "", "shared_link": {"url": folder_reference}},
                headers=self._auth_headers,
            )
            entries.extend(page.get("entries") or [])
            while page.get("has_more"):
                page = await self.client.post_json(
                    f"{API_URL}/files/list_folder/continue",
                    {"cursor": page["cursor"]},
                    headers=self._auth_headers,
                )
                entries.extend(page.get("entries") or [])
        except (*_HTTP_ERRORS, ValueError, KeyError) as e:
            raise ListingError(
                f"Failed to list Dropbox folder {folder_id}: {e}", folder_id=folder_id, source=self.source
            ) from e

        files = []
        for entry in entries:
            if entry.get(".tag") != "file":
                continue
            mime_type = guess_image_mime(entry.get("name", ""))
            if mime_type is None:
                continue
            files.append(
                FileDescriptor(id=entry["id"], name=entry["name"], mime_type=mime_type, size=entry.get("size"))
            )
        logger.info(f"Found {len(files)} image files in Dropbox folder {folder_id}")
        return files

    async def download_file(self, file_id: str, hint: DownloadHint) -> DownloadedFile:
        try:
            if self.access_token and hint.folder_reference and hint.file_name:
                response = await self.client.request(
                    "POST",
                    f"{CONTENT_URL}/sharing/get_shared_link_file",
                    headers={
                        **self._auth_headers,
                        "Dropbox-API-Arg": json.dumps(
                            {"url": hint.folder_reference, "path": f"/{hint.file_name}"}
                        ),
                    },
                )
            else:
                response = await self.client.request("GET", direct_download_url(file_id, hint.folder_reference))
        except _HTTP_ERRORS as e:
            raise DownloadError(
                f"Error downloading Dropbox file {file_id}: {e}",
                details={"file_id": file_id, "source": self.source},
            ) from e

        return DownloadedFile(
            data=response.body,
            mime_type=response.content_type or "application/octet-stream",
            size=len(response.body),
        )

    async def close(self) -> None:
        await self.client.close()
