"""Storage client protocol and data types.

This module defines the interface the upload orchestrator needs from an
object store: multipart lifecycle, presigned URLs and basic object
management. Provider failures are reported through the ``StorageError``
hierarchy so callers can tell transient faults from rejections.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence


class StorageError(RuntimeError):
    """Raised when object storage operations fail.

    Attributes:
        operation: Storage operation that failed (e.g. ``create_multipart_upload``).
        bucket: Target bucket, when known.
        key: Target object key, when known.
        code: Provider error code, when the provider returned one.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        bucket: str | None = None,
        key: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.bucket = bucket
        self.key = key
        self.code = code

    def context(self) -> dict[str, str | None]:
        return {
            "operation": self.operation,
            "bucket": self.bucket,
            "key": self.key,
            "provider_error_code": self.code,
        }


class TransientStorageError(StorageError):
    """Network, timeout, throttling or 5xx failure; worth retrying."""

    retryable = True


class RejectedStorageError(StorageError):
    """The provider refused the request; retrying will not help."""


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class ObjectHead:
    """Metadata from a HEAD object request."""

    size_bytes: int
    etag: str | None
    content_type: str | None
    last_modified: datetime | None = None


class StorageClient(Protocol):
    """Protocol defining the interface for object storage backends."""

    def create_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
    ) -> MultipartUpload:
        """Create a multipart upload and return its provider handle.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def presign_upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        expires_in: int,
    ) -> str:
        """Generate a presigned URL for uploading one part (1-based).

        Raises:
            StorageError: If URL generation fails.
        """
        ...

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        """Combine the uploaded parts into the final object.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and discard uploaded parts.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def presign_download(
        self,
        *,
        bucket: str,
        object_key: str,
        expires_in: int,
        filename: str | None = None,
    ) -> str:
        """Generate a presigned GET URL, optionally forcing an attachment filename.

        Raises:
            StorageError: If URL generation fails.
        """
        ...

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object from storage.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content.

        Raises:
            StorageError: If the object doesn't exist or the operation fails.
        """
        ...

    def copy_object(
        self,
        *,
        bucket: str,
        source_key: str,
        destination_key: str,
    ) -> None:
        """Server-side copy within a bucket.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def list_objects(self, *, bucket: str, prefix: str) -> list[str]:
        """List every object key under ``prefix``.

        Raises:
            StorageError: If the operation fails.
        """
        ...
