"""S3-compatible storage client implementation.

This module provides an S3-compatible storage client that works with
AWS S3, MinIO, and other S3-compatible object storage services.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
)

from upload_service.infra.storage.client import (
    CompletedPart,
    MultipartUpload,
    ObjectHead,
    RejectedStorageError,
    StorageError,
    TransientStorageError,
)

if TYPE_CHECKING:
    from upload_service.common.config import Settings

# Error codes S3 (and MinIO) use for conditions that clear up on their own.
TRANSIENT_ERROR_CODES = frozenset(
    {
        "InternalError",
        "RequestTimeout",
        "ServiceUnavailable",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
    }
)


def _translate_error(
    exc: Exception,
    message: str,
    *,
    operation: str,
    bucket: str | None = None,
    key: str | None = None,
) -> StorageError:
    """Map a botocore failure onto the storage error hierarchy."""
    context: dict[str, Any] = {"operation": operation, "bucket": bucket, "key": key}
    text = f"{message}: {exc}"

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        code = error.get("Code")
        status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
        if code in TRANSIENT_ERROR_CODES or (status is not None and int(status) >= 500):
            return TransientStorageError(text, code=code, **context)
        return RejectedStorageError(text, code=code, **context)

    if isinstance(exc, (BotoConnectionError, HTTPClientError)):
        return TransientStorageError(text, code=type(exc).__name__, **context)

    if isinstance(exc, BotoCoreError):
        return RejectedStorageError(text, code=type(exc).__name__, **context)

    return RejectedStorageError(text, **context)


class S3StorageClient:
    """S3-compatible object storage client.

    Supports AWS S3, MinIO, and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(self, *, settings: "Settings") -> None:
        self._settings = settings
        self._client = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings.

        Explicit keys are only passed when both halves are configured;
        otherwise boto3 resolves credentials from its default chain
        (environment, shared profile, instance or task role).
        """
        addressing_style = (settings.S3_ADDRESSING_STYLE or "auto").strip().lower()
        config = Config(s3={"addressing_style": addressing_style})

        kwargs: dict[str, Any] = {
            "region_name": settings.S3_REGION,
            "use_ssl": bool(settings.S3_USE_SSL),
            "config": config,
        }
        if settings.S3_ENDPOINT_URL:
            kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
        if settings.has_explicit_s3_credentials:
            kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY_ID
            kwargs["aws_secret_access_key"] = settings.S3_SECRET_ACCESS_KEY

        return boto3.client("s3", **kwargs)

    def create_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
    ) -> MultipartUpload:
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if content_type:
            params["ContentType"] = content_type

        try:
            response = self._client.create_multipart_upload(**params)
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to create multipart upload",
                operation="create_multipart_upload",
                bucket=bucket,
                key=object_key,
            ) from exc

        upload_id = response.get("UploadId")
        if not upload_id:
            raise RejectedStorageError(
                "S3 response missing UploadId",
                operation="create_multipart_upload",
                bucket=bucket,
                key=object_key,
            )

        return MultipartUpload(
            upload_id=str(upload_id),
            bucket=bucket,
            object_key=object_key,
        )

    def presign_upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        expires_in: int,
    ) -> str:
        try:
            url = self._client.generate_presigned_url(
                "upload_part",
                Params={
                    "Bucket": bucket,
                    "Key": object_key,
                    "UploadId": upload_id,
                    "PartNumber": int(part_number),
                },
                ExpiresIn=int(expires_in),
            )
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to generate presigned URL",
                operation="presign_upload_part",
                bucket=bucket,
                key=object_key,
            ) from exc

        if not url:
            raise RejectedStorageError(
                "Generated presigned URL is empty",
                operation="presign_upload_part",
                bucket=bucket,
                key=object_key,
            )

        return str(url)

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        # S3 rejects part lists that are not in ascending order.
        multipart_payload = {
            "Parts": [
                {"ETag": part.etag, "PartNumber": int(part.part_number)}
                for part in sorted(parts, key=lambda p: p.part_number)
            ]
        }

        try:
            self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
                MultipartUpload=multipart_payload,
            )
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to complete multipart upload",
                operation="complete_multipart_upload",
                bucket=bucket,
                key=object_key,
            ) from exc

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        try:
            self._client.abort_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
            )
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to abort multipart upload",
                operation="abort_multipart_upload",
                bucket=bucket,
                key=object_key,
            ) from exc

    def presign_download(
        self,
        *,
        bucket: str,
        object_key: str,
        expires_in: int,
        filename: str | None = None,
    ) -> str:
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if filename:
            safe_filename = filename.replace('"', '\\"')
            params["ResponseContentDisposition"] = (
                f'attachment; filename="{safe_filename}"'
            )

        try:
            url = self._client.generate_presigned_url(
                "get_object",
                Params=params,
                ExpiresIn=int(expires_in),
            )
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to generate download URL",
                operation="presign_download",
                bucket=bucket,
                key=object_key,
            ) from exc

        if not url:
            raise RejectedStorageError(
                "Generated presigned URL is empty",
                operation="presign_download",
                bucket=bucket,
                key=object_key,
            )

        return str(url)

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        try:
            self._client.delete_object(Bucket=bucket, Key=object_key)
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to delete object",
                operation="delete_object",
                bucket=bucket,
                key=object_key,
            ) from exc

    def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        try:
            response = self._client.head_object(Bucket=bucket, Key=object_key)
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to get object metadata",
                operation="head_object",
                bucket=bucket,
                key=object_key,
            ) from exc

        size = response.get("ContentLength")
        return ObjectHead(
            size_bytes=int(size) if size is not None else 0,
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            last_modified=response.get("LastModified"),
        )

    def copy_object(
        self,
        *,
        bucket: str,
        source_key: str,
        destination_key: str,
    ) -> None:
        try:
            self._client.copy_object(
                Bucket=bucket,
                Key=destination_key,
                CopySource={"Bucket": bucket, "Key": source_key},
            )
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to copy object",
                operation="copy_object",
                bucket=bucket,
                key=source_key,
            ) from exc

    def list_objects(self, *, bucket: str, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for item in page.get("Contents", []) or []:
                    key = item.get("Key")
                    if key:
                        keys.append(str(key))
        except Exception as exc:
            raise _translate_error(
                exc,
                "Failed to list objects",
                operation="list_objects",
                bucket=bucket,
                key=prefix,
            ) from exc
        return keys
