"""
Source provider interface and registry.

A provider lists the files of a shared folder and downloads single files
from it. The pipeline looks providers up by the ``source`` carried in each
envelope.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from shareflow.exceptions import ProviderNotFoundError
from shareflow.models import DownloadedFile, DownloadHint, FileDescriptor
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.providers")


class SourceProvider(ABC):
    """Base class for folder-share sources."""

    #: Source name used in envelopes and catalog rows
    source: str = ""

    @abstractmethod
    async def list_files(self, folder_id: str, folder_reference: str | None = None) -> list[FileDescriptor]:
        """
        List the image files of a folder.

        Raises:
            ListingError: The folder could not be listed
        """
        ...

    @abstractmethod
    async def download_file(self, file_id: str, hint: DownloadHint) -> DownloadedFile:
        """
        Download one file.

        Raises:
            DownloadError: The download failed (transient)
        """
        ...

    async def close(self) -> None:
        """Release network resources."""


class ProviderRegistry:
    """
    Maps source names to providers.

    Example:
        registry = ProviderRegistry([GoogleDriveProvider(api_key), DropboxProvider()])
        provider = registry.get("google_drive")
    """

    def __init__(self, providers: list[SourceProvider] | None = None):
        self._providers: dict[str, SourceProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: SourceProvider, *, source: str | None = None) -> None:
        name = source or provider.source
        if not name:
            raise ValueError(f"Provider {provider!r} has no source name")
        if name in self._providers:
            logger.debug(f"Replacing provider for source '{name}'")
        self._providers[name] = provider

    def get(self, source: str) -> SourceProvider:
        provider = self._providers.get(source)
        if provider is None:
            raise ProviderNotFoundError(source)
        return provider

    @property
    def sources(self) -> list[str]:
        return list(self._providers.keys())

    def __contains__(self, source: object) -> bool:
        return source in self._providers

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()

    async def __aenter__(self) -> ProviderRegistry:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
