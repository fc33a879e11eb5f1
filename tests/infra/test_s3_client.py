"""Tests for the S3 storage client."""

import dataclasses
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from upload_service.common.config import Settings
from upload_service.infra.storage.client import (
    CompletedPart,
    MultipartUpload,
    RejectedStorageError,
    StorageError,
    TransientStorageError,
)
from upload_service.infra.storage.s3_client import S3StorageClient


def _client_error(code: str, status: int, operation: str = "CreateMultipartUpload"):
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


@pytest.fixture
def base_settings():
    return Settings(
        DB_URL="sqlite:///unused.db",
        S3_BUCKET="test-bucket",
        S3_REGION="eu-west-1",
    )


class TestBuildClient:
    def test_uses_default_credential_chain_without_keys(self, base_settings):
        with patch("upload_service.infra.storage.s3_client.boto3.client") as factory:
            S3StorageClient(settings=base_settings)

        kwargs = factory.call_args.kwargs
        assert factory.call_args.args == ("s3",)
        assert kwargs["region_name"] == "eu-west-1"
        assert "aws_access_key_id" not in kwargs
        assert "aws_secret_access_key" not in kwargs
        assert "endpoint_url" not in kwargs

    def test_ignores_half_configured_keys(self, base_settings):
        settings = dataclasses.replace(base_settings, S3_ACCESS_KEY_ID="only-key")
        with patch("upload_service.infra.storage.s3_client.boto3.client") as factory:
            S3StorageClient(settings=settings)

        assert "aws_access_key_id" not in factory.call_args.kwargs

    def test_passes_explicit_keys_and_endpoint(self, base_settings):
        settings = dataclasses.replace(
            base_settings,
            S3_ACCESS_KEY_ID="key",
            S3_SECRET_ACCESS_KEY="secret",
            S3_ENDPOINT_URL="http://localhost:9000",
            S3_ADDRESSING_STYLE="path",
            S3_USE_SSL=False,
        )
        with patch("upload_service.infra.storage.s3_client.boto3.client") as factory:
            S3StorageClient(settings=settings)

        kwargs = factory.call_args.kwargs
        assert kwargs["aws_access_key_id"] == "key"
        assert kwargs["aws_secret_access_key"] == "secret"
        assert kwargs["endpoint_url"] == "http://localhost:9000"
        assert kwargs["use_ssl"] is False
        assert kwargs["config"].s3 == {"addressing_style": "path"}


class TestS3StorageClient:
    @pytest.fixture
    def mock_s3(self):
        mock_client = MagicMock()
        with patch.object(S3StorageClient, "_build_client", return_value=mock_client):
            yield mock_client

    @pytest.fixture
    def client(self, mock_s3, base_settings):
        return S3StorageClient(settings=base_settings)

    def test_create_multipart_upload(self, client, mock_s3):
        mock_s3.create_multipart_upload.return_value = {"UploadId": "upload-1"}

        result = client.create_multipart_upload(
            bucket="test-bucket",
            object_key="uploads/a.pdf",
            content_type="application/pdf",
        )

        assert result == MultipartUpload(
            upload_id="upload-1", bucket="test-bucket", object_key="uploads/a.pdf"
        )
        mock_s3.create_multipart_upload.assert_called_once_with(
            Bucket="test-bucket",
            Key="uploads/a.pdf",
            ContentType="application/pdf",
        )

    def test_create_multipart_upload_missing_upload_id(self, client, mock_s3):
        mock_s3.create_multipart_upload.return_value = {}

        with pytest.raises(RejectedStorageError, match="missing UploadId"):
            client.create_multipart_upload(bucket="test-bucket", object_key="k")

    def test_presign_upload_part(self, client, mock_s3):
        mock_s3.generate_presigned_url.return_value = "https://presigned-url"

        url = client.presign_upload_part(
            bucket="test-bucket",
            object_key="k",
            upload_id="upload-1",
            part_number=3,
            expires_in=3600,
        )

        assert url == "https://presigned-url"
        mock_s3.generate_presigned_url.assert_called_once_with(
            "upload_part",
            Params={
                "Bucket": "test-bucket",
                "Key": "k",
                "UploadId": "upload-1",
                "PartNumber": 3,
            },
            ExpiresIn=3600,
        )

    def test_presign_upload_part_empty_url(self, client, mock_s3):
        mock_s3.generate_presigned_url.return_value = ""

        with pytest.raises(StorageError, match="empty"):
            client.presign_upload_part(
                bucket="test-bucket",
                object_key="k",
                upload_id="upload-1",
                part_number=1,
                expires_in=60,
            )

    def test_complete_sorts_parts(self, client, mock_s3):
        client.complete_multipart_upload(
            bucket="test-bucket",
            object_key="k",
            upload_id="upload-1",
            parts=[CompletedPart(2, "etag2"), CompletedPart(1, "etag1")],
        )

        call = mock_s3.complete_multipart_upload.call_args.kwargs
        assert call["UploadId"] == "upload-1"
        assert call["MultipartUpload"]["Parts"] == [
            {"ETag": "etag1", "PartNumber": 1},
            {"ETag": "etag2", "PartNumber": 2},
        ]

    def test_presign_download_sets_attachment_disposition(self, client, mock_s3):
        mock_s3.generate_presigned_url.return_value = "https://download"

        client.presign_download(
            bucket="test-bucket",
            object_key="k",
            expires_in=3600,
            filename='say "hi".txt',
        )

        params = mock_s3.generate_presigned_url.call_args.kwargs["Params"]
        assert params["ResponseContentDisposition"] == (
            'attachment; filename="say \\"hi\\".txt"'
        )

    def test_presign_download_without_filename(self, client, mock_s3):
        mock_s3.generate_presigned_url.return_value = "https://download"

        client.presign_download(bucket="test-bucket", object_key="k", expires_in=60)

        params = mock_s3.generate_presigned_url.call_args.kwargs["Params"]
        assert "ResponseContentDisposition" not in params

    def test_head_object(self, client, mock_s3):
        modified = datetime(2026, 1, 1, tzinfo=timezone.utc)
        mock_s3.head_object.return_value = {
            "ContentLength": 1024,
            "ETag": '"etag"',
            "ContentType": "application/pdf",
            "LastModified": modified,
        }

        head = client.head_object(bucket="test-bucket", object_key="k")

        assert head.size_bytes == 1024
        assert head.etag == '"etag"'
        assert head.last_modified == modified

    def test_copy_object(self, client, mock_s3):
        client.copy_object(bucket="test-bucket", source_key="a", destination_key="b")

        mock_s3.copy_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="b",
            CopySource={"Bucket": "test-bucket", "Key": "a"},
        )

    def test_list_objects_walks_pages(self, client, mock_s3):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "docs/a"}, {"Key": "docs/b"}]},
            {"Contents": [{"Key": "docs/c"}]},
            {},
        ]
        mock_s3.get_paginator.return_value = paginator

        keys = client.list_objects(bucket="test-bucket", prefix="docs/")

        assert keys == ["docs/a", "docs/b", "docs/c"]
        mock_s3.get_paginator.assert_called_once_with("list_objects_v2")
        paginator.paginate.assert_called_once_with(Bucket="test-bucket", Prefix="docs/")

    def test_delete_object(self, client, mock_s3):
        client.delete_object(bucket="test-bucket", object_key="k")

        mock_s3.delete_object.assert_called_once_with(Bucket="test-bucket", Key="k")


class TestErrorClassification:
    @pytest.fixture
    def mock_s3(self):
        mock_client = MagicMock()
        with patch.object(S3StorageClient, "_build_client", return_value=mock_client):
            yield mock_client

    @pytest.fixture
    def client(self, mock_s3, base_settings):
        return S3StorageClient(settings=base_settings)

    @pytest.mark.parametrize(
        ("code", "status"),
        [
            ("SlowDown", 503),
            ("InternalError", 500),
            ("RequestTimeout", 400),
            ("ThrottlingException", 400),
            ("Whatever", 502),
        ],
    )
    def test_transient_client_errors(self, client, mock_s3, code, status):
        mock_s3.create_multipart_upload.side_effect = _client_error(code, status)

        with pytest.raises(TransientStorageError) as excinfo:
            client.create_multipart_upload(bucket="test-bucket", object_key="k")

        assert excinfo.value.retryable
        assert excinfo.value.code == code
        assert excinfo.value.operation == "create_multipart_upload"
        assert excinfo.value.bucket == "test-bucket"
        assert excinfo.value.key == "k"

    @pytest.mark.parametrize(
        ("code", "status"),
        [("AccessDenied", 403), ("NoSuchUpload", 404), ("InvalidPart", 400)],
    )
    def test_rejected_client_errors(self, client, mock_s3, code, status):
        mock_s3.complete_multipart_upload.side_effect = _client_error(
            code, status, "CompleteMultipartUpload"
        )

        with pytest.raises(RejectedStorageError) as excinfo:
            client.complete_multipart_upload(
                bucket="test-bucket",
                object_key="k",
                upload_id="u",
                parts=[CompletedPart(1, "e")],
            )

        assert not excinfo.value.retryable
        assert excinfo.value.code == code

    def test_connection_errors_are_transient(self, client, mock_s3):
        mock_s3.delete_object.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:9000"
        )

        with pytest.raises(TransientStorageError):
            client.delete_object(bucket="test-bucket", object_key="k")

    def test_missing_credentials_are_rejected(self, client, mock_s3):
        mock_s3.generate_presigned_url.side_effect = NoCredentialsError()

        with pytest.raises(RejectedStorageError) as excinfo:
            client.presign_download(bucket="test-bucket", object_key="k", expires_in=60)

        assert excinfo.value.code == "NoCredentialsError"

    def test_unexpected_errors_are_rejected(self, client, mock_s3):
        mock_s3.head_object.side_effect = Exception("boom")

        with pytest.raises(RejectedStorageError, match="Failed to get object metadata"):
            client.head_object(bucket="test-bucket", object_key="k")
