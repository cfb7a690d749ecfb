"""
Tests for storage keys and storage backends.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from shareflow.exceptions import UploadError
from shareflow.storage import FilesystemStorageBackend, S3StorageBackend, build_storage_key


def client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "HeadBucket",
    )


class TestStorageKey:
    def test_layout(self):
        assert build_storage_key("google_drive", "abc", "cat.png") == "images/google_drive/abc/cat.png"

    def test_deterministic(self):
        assert build_storage_key("dropbox", "id", "x.jpg") == build_storage_key("dropbox", "id", "x.jpg")

    def test_same_name_different_ids(self):
        assert build_storage_key("dropbox", "1", "x.jpg") != build_storage_key("dropbox", "2", "x.jpg")

    @pytest.mark.parametrize("parts", [("", "id", "x"), ("dropbox", "", "x"), ("dropbox", "id", "")])
    def test_missing_part(self, parts):
        with pytest.raises(UploadError):
            build_storage_key(*parts)


class TestFilesystemStorage:
    def test_put_writes_file(self, tmp_path):
        storage = FilesystemStorageBackend(tmp_path)
        storage.ensure_bucket("images")

        locator = storage.put("images", "images/dropbox/1/x.png", b"data", "image/png")

        path = tmp_path / "images" / "images" / "dropbox" / "1" / "x.png"
        assert path.read_bytes() == b"data"
        assert locator == path.resolve().as_uri()
        assert not path.with_name("x.png.part").exists()

    def test_put_overwrites(self, tmp_path):
        storage = FilesystemStorageBackend(tmp_path)
        first = storage.put("images", "k/x.png", b"one", "image/png")
        second = storage.put("images", "k/x.png", b"two", "image/png")

        assert first == second
        assert (tmp_path / "images" / "k" / "x.png").read_bytes() == b"two"

    def test_rejects_traversal(self, tmp_path):
        storage = FilesystemStorageBackend(tmp_path / "root")
        with pytest.raises(UploadError, match="Path traversal"):
            storage.put("images", "../../escape.png", b"x", "image/png")


@pytest.fixture
def s3_client():
    client = MagicMock()
    with patch("shareflow.storage.s3.boto3.client", return_value=client) as factory:
        client.factory = factory
        yield client


class TestS3Storage:
    def test_client_kwargs(self, s3_client):
        storage = S3StorageBackend(
            region="eu-west-1",
            endpoint_url="http://minio:9000",
            access_key_id="key",
            secret_access_key="secret",
        )
        storage.put("images", "k", b"x", "image/png")

        s3_client.factory.assert_called_once_with(
            "s3",
            region_name="eu-west-1",
            endpoint_url="http://minio:9000",
            aws_access_key_id="key",
            aws_secret_access_key="secret",
        )

    def test_put(self, s3_client):
        storage = S3StorageBackend()
        locator = storage.put("images", "images/google_drive/a/a.png", b"data", "image/png")

        assert locator == "s3://images/images/google_drive/a/a.png"
        s3_client.put_object.assert_called_once_with(
            Bucket="images", Key="images/google_drive/a/a.png", Body=b"data", ContentType="image/png"
        )

    def test_put_failure_is_upload_error(self, s3_client):
        s3_client.put_object.side_effect = client_error("SlowDown", 503)
        with pytest.raises(UploadError, match="s3://images/k"):
            S3StorageBackend().put("images", "k", b"x", "image/png")

    def test_put_connection_failure(self, s3_client):
        s3_client.put_object.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")
        with pytest.raises(UploadError):
            S3StorageBackend().put("images", "k", b"x", "image/png")

    def test_ensure_existing_bucket(self, s3_client):
        storage = S3StorageBackend()
        storage.ensure_bucket("images")
        storage.ensure_bucket("images")

        s3_client.head_bucket.assert_called_once_with(Bucket="images")
        s3_client.create_bucket.assert_not_called()

    def test_ensure_creates_missing_bucket(self, s3_client):
        s3_client.head_bucket.side_effect = client_error("404", 404)
        S3StorageBackend(region="eu-west-1").ensure_bucket("images")

        s3_client.create_bucket.assert_called_once_with(
            Bucket="images", CreateBucketConfiguration={"LocationConstraint": "eu-west-1"}
        )

    def test_ensure_us_east_1_has_no_location(self, s3_client):
        s3_client.head_bucket.side_effect = client_error("NoSuchBucket", 404)
        S3StorageBackend(region="us-east-1").ensure_bucket("images")
        s3_client.create_bucket.assert_called_once_with(Bucket="images")

    def test_ensure_tolerates_concurrent_create(self, s3_client):
        s3_client.head_bucket.side_effect = client_error("404", 404)
        s3_client.create_bucket.side_effect = client_error("BucketAlreadyOwnedByYou", 409)
        S3StorageBackend().ensure_bucket("images")

    def test_ensure_access_denied(self, s3_client):
        s3_client.head_bucket.side_effect = client_error("403", 403)
        with pytest.raises(UploadError, match="Cannot access bucket"):
            S3StorageBackend().ensure_bucket("images")
