"""
S3 storage backend.

Works with AWS S3 and S3-compatible services such as MinIO (set
``endpoint_url``). Credentials come from config, the environment, or an IAM
role.

Config example:
    storage:
      backend: s3
      bucket: images
      region: us-east-1
      endpoint_url: http://minio:9000   # Optional (S3-compatible services)
      access_key_id: ...                # Optional, uses env/IAM if not set
      secret_access_key: ...            # Optional
      session_token: ...                # Optional, temporary credentials
"""

from __future__ import annotations

from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shareflow.exceptions import UploadError
from shareflow.storage.base import StorageBackend
from shareflow.utils.logging import get_logger

logger = get_logger("shareflow.storage.s3")

_NOT_FOUND_CODES = ("404", "NoSuchBucket", "NotFound")


def _error_code(error: ClientError) -> tuple[str | None, int | None]:
    response = getattr(error, "response", None) or {}
    code = response.get("Error", {}).get("Code")
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code, status


class S3StorageBackend(StorageBackend):
    """
    boto3-backed object store.

    The client is created lazily on first use.
    """

    def __init__(
        self,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        session_token: str | None = None,
    ):
        self.region = region
        self.endpoint_url = endpoint_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._session_token = session_token
        self._client = None
        self._known_buckets: set[str] = set()

    def _get_client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}

        if self.region:
            kwargs["region_name"] = self.region

        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url

        # Explicit credentials override env/IAM
        if self._access_key_id and self._secret_access_key:
            kwargs["aws_access_key_id"] = self._access_key_id
            kwargs["aws_secret_access_key"] = self._secret_access_key
            if self._session_token:
                kwargs["aws_session_token"] = self._session_token

        return kwargs

    @property
    def client(self):
        """boto3 S3 client (lazy initialization)."""
        if self._client is None:
            self._client = boto3.client("s3", **self._get_client_kwargs())
        return self._client

    def ensure_bucket(self, name: str) -> None:
        if name in self._known_buckets:
            return
        try:
            self.client.head_bucket(Bucket=name)
        except ClientError as e:
            code, status = _error_code(e)
            if code not in _NOT_FOUND_CODES and status != 404:
                raise UploadError(f"Cannot access bucket {name}: {e}", details={"bucket": name}) from e
            self._create_bucket(name)
        except BotoCoreError as e:
            raise UploadError(f"Cannot access bucket {name}: {e}", details={"bucket": name}) from e
        self._known_buckets.add(name)

    def _create_bucket(self, name: str) -> None:
        kwargs: dict[str, Any] = {"Bucket": name}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**kwargs)
        except ClientError as e:
            code, _status = _error_code(e)
            # Another worker created it first
            if code in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return
            raise UploadError(f"Failed to create bucket {name}: {e}", details={"bucket": name}) from e
        except BotoCoreError as e:
            raise UploadError(f"Failed to create bucket {name}: {e}", details={"bucket": name}) from e
        logger.info(f"Created bucket: {name}")

    def put(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        kwargs: dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise UploadError(f"Failed to upload s3://{bucket}/{key}: {e}", details={"bucket": bucket, "key": key}) from e
        return f"s3://{bucket}/{key}"

    def close(self) -> None:
        # boto3 clients need no explicit close; reset for a fresh client next time
        self._client = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(endpoint_url='{self.endpoint_url}', region='{self.region}')"
