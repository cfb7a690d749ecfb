"""
Source providers: where shared folders are listed and files downloaded.
"""

from shareflow.providers.base import ProviderRegistry, SourceProvider
from shareflow.providers.dropbox import DropboxProvider
from shareflow.providers.google_drive import GoogleDriveProvider
from shareflow.providers.http import HTTPClient, HTTPResponse, TokenBucket

__all__ = [
    "SourceProvider",
    "ProviderRegistry",
    "GoogleDriveProvider",
    "DropboxProvider",
    "HTTPClient",
    "HTTPResponse",
    "TokenBucket",
]
