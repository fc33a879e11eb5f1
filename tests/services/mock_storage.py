"""In-memory storage client for exercising the upload services."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from upload_service.infra.storage.client import (
    CompletedPart,
    MultipartUpload,
    ObjectHead,
    RejectedStorageError,
    TransientStorageError,
)


@dataclass
class MockStorageClient:
    """In-memory StorageClient with failure injection.

    ``fail_transient["op"] = n`` makes the next ``n`` calls of ``op`` raise a
    TransientStorageError; ``fail_rejected`` does the same with
    RejectedStorageError. ``calls`` counts every invocation per operation.
    """

    uploads: dict[str, dict[str, Any]] = field(default_factory=dict)
    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    fail_transient: dict[str, int] = field(default_factory=dict)
    fail_rejected: dict[str, int] = field(default_factory=dict)
    calls: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _upload_counter: int = field(default=0)

    def _enter(self, operation: str, *, bucket: str, key: str | None) -> None:
        self.calls[operation] += 1
        if self.fail_transient.get(operation, 0) > 0:
            self.fail_transient[operation] -= 1
            raise TransientStorageError(
                f"{operation} unavailable",
                operation=operation,
                bucket=bucket,
                key=key,
                code="SlowDown",
            )
        if self.fail_rejected.get(operation, 0) > 0:
            self.fail_rejected[operation] -= 1
            raise RejectedStorageError(
                f"{operation} rejected",
                operation=operation,
                bucket=bucket,
                key=key,
                code="AccessDenied",
            )

    def create_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
    ) -> MultipartUpload:
        self._enter("create_multipart_upload", bucket=bucket, key=object_key)
        self._upload_counter += 1
        upload_id = f"mock-upload-{self._upload_counter}"
        self.uploads[upload_id] = {
            "bucket": bucket,
            "object_key": object_key,
            "content_type": content_type,
            "parts": {},
            "completed": False,
            "aborted": False,
        }
        return MultipartUpload(upload_id=upload_id, bucket=bucket, object_key=object_key)

    def presign_upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        expires_in: int = 3600,
    ) -> str:
        self._enter("presign_upload_part", bucket=bucket, key=object_key)
        return (
            f"https://mock-s3/{bucket}/{object_key}"
            f"?uploadId={upload_id}&partNumber={part_number}&expires={expires_in}"
        )

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: list[CompletedPart],
    ) -> None:
        self._enter("complete_multipart_upload", bucket=bucket, key=object_key)
        known = self.uploads.get(upload_id)
        # Finished and aborted upload ids are gone, as on S3.
        if known is None or known["completed"] or known["aborted"]:
            raise RejectedStorageError(
                f"Upload {upload_id} not found",
                operation="complete_multipart_upload",
                bucket=bucket,
                key=object_key,
                code="NoSuchUpload",
            )

        upload = self.uploads[upload_id]
        upload["completed"] = True
        upload["parts"] = {p.part_number: p.etag for p in parts}
        self.objects[f"{bucket}/{object_key}"] = {
            "content_type": upload["content_type"],
            "size_bytes": 1024 * 1024 * len(parts),
            "etag": f"mock-etag-{upload_id}",
            "last_modified": datetime(2026, 1, 1, tzinfo=timezone.utc),
        }

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        self._enter("abort_multipart_upload", bucket=bucket, key=object_key)
        if upload_id in self.uploads:
            self.uploads[upload_id]["aborted"] = True

    def presign_download(
        self,
        *,
        bucket: str,
        object_key: str,
        expires_in: int = 3600,
        filename: str | None = None,
    ) -> str:
        self._enter("presign_download", bucket=bucket, key=object_key)
        return f"https://mock-s3/{bucket}/{object_key}?download={filename or ''}"

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        self._enter("delete_object", bucket=bucket, key=object_key)
        self.objects.pop(f"{bucket}/{object_key}", None)

    def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        self._enter("head_object", bucket=bucket, key=object_key)
        obj = self.objects.get(f"{bucket}/{object_key}")
        if obj is None:
            raise RejectedStorageError(
                "Not Found",
                operation="head_object",
                bucket=bucket,
                key=object_key,
                code="404",
            )
        return ObjectHead(
            size_bytes=obj["size_bytes"],
            etag=obj.get("etag"),
            content_type=obj.get("content_type"),
            last_modified=obj.get("last_modified"),
        )

    def copy_object(self, *, bucket: str, source_key: str, destination_key: str) -> None:
        self._enter("copy_object", bucket=bucket, key=source_key)
        source = self.objects.get(f"{bucket}/{source_key}")
        if source is None:
            raise RejectedStorageError(
                "NoSuchKey",
                operation="copy_object",
                bucket=bucket,
                key=source_key,
                code="NoSuchKey",
            )
        self.objects[f"{bucket}/{destination_key}"] = dict(source)

    def list_objects(self, *, bucket: str, prefix: str) -> list[str]:
        self._enter("list_objects", bucket=bucket, key=prefix)
        bucket_prefix = f"{bucket}/"
        return sorted(
            key[len(bucket_prefix):]
            for key in self.objects
            if key.startswith(bucket_prefix + prefix)
        )

    def put_object(self, bucket: str, object_key: str, size_bytes: int = 1) -> None:
        """Test helper to place an object directly in the store."""
        self.objects[f"{bucket}/{object_key}"] = {
            "content_type": "application/octet-stream",
            "size_bytes": size_bytes,
            "etag": "mock-etag",
            "last_modified": None,
        }

