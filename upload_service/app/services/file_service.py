"""Multipart upload orchestration.

This module drives the lifecycle of an upload session against the object
store: it plans the parts, hands out presigned part URLs, reconciles the
session when the client reports completion, and issues download URLs.

Session state only moves forward::

    initiated -> completed
    initiated -> failed

A session row is written only after the provider has returned a multipart
handle, so a failed initiation leaves nothing behind.
"""

from __future__ import annotations

import html
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from upload_service.app.services.base import (
    AccessDeniedError,
    BaseService,
    FailureSeverity,
    ServiceError,
)
from upload_service.common.config import Settings, get_settings
from upload_service.common.retry import retry
from upload_service.domain.repositories.file_repository import FileRepository
from upload_service.infra.db.models import File, FileStatus, FileVisibility
from upload_service.infra.observability.metrics import PROVIDER_RETRIES, UPLOAD_EVENTS
from upload_service.infra.storage.client import (
    CompletedPart,
    StorageClient,
    StorageError,
    TransientStorageError,
)
from upload_service.infra.storage.s3_client import S3StorageClient

T = TypeVar("T")

logger = logging.getLogger("upload_service.files")

# Maximum part number allowed by S3
MAX_PART_NUMBER = 10000
MAX_FILENAME_LENGTH = 255
# S3 object keys are limited to 1024 bytes of UTF-8
MAX_KEY_BYTES = 1024


class UploadSessionNotFoundError(ServiceError):
    """Raised when no live session matches the lookup."""


class InvalidUploadOperationError(ServiceError):
    """Raised when caller input is malformed or the request is not allowed."""


class StorageBackendNotConfiguredError(ServiceError):
    """Raised when the storage backend is not properly configured."""


class UploadFailedError(ServiceError):
    """Raised when the object store could not carry out an operation.

    The message is safe to show to callers; provider details are only logged.
    """

    def __init__(self, message: str, *, severity: FailureSeverity) -> None:
        super().__init__(message)
        self.severity = severity

    @property
    def retryable(self) -> bool:
        return self.severity is FailureSeverity.RETRYABLE


@dataclass(frozen=True, slots=True)
class FileUploadInitData:
    """Input data for initiating a multipart upload."""

    filename: str
    content_type: str
    size: int
    directory: str | None = None
    visibility: str = FileVisibility.PRIVATE.value


@dataclass(frozen=True, slots=True)
class PartUploadUrl:
    """Presigned URL for uploading one part."""

    part_number: int
    url: str


@dataclass(frozen=True, slots=True)
class MultipartInitResult:
    """Result of initiating a multipart upload."""

    file: File
    upload_id: str
    key: str
    parts: list[PartUploadUrl] = field(default_factory=list)

    @property
    def file_id(self) -> str:
        return self.file.id


def sanitize_filename(filename: str) -> str:
    """Escape markup-significant characters; everything else is kept."""
    return html.escape(filename.strip(), quote=True)


def compute_total_parts(size: int, part_size: int) -> int:
    """Number of parts for a declared size; unknown (0) size gets one part."""
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    if size <= 0:
        return 1
    return -(-size // part_size)


def build_storage_key(directory: str, display_name: str) -> str:
    """Unique object key: ``<dir>/<unix time>_<random token>_<name>``."""
    return f"{directory}/{int(time.time())}_{secrets.token_hex(8)}_{display_name}"


def _severity_for(exc: StorageError) -> FailureSeverity:
    if isinstance(exc, TransientStorageError):
        return FailureSeverity.RETRYABLE
    return FailureSeverity.FATAL


class FileService(BaseService):
    """Application service for multipart upload sessions.

    Handles initiation, completion and abort of multipart uploads, download
    URL generation and deletion. Provider calls that create or finalize an
    upload are retried on transient failures with a fixed delay.
    """

    def __init__(
        self,
        session: Session,
        *,
        repository: FileRepository | None = None,
        storage_client: StorageClient | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(session)
        self._repo = repository or FileRepository(session)
        self._settings = settings or get_settings()
        if not self._settings.S3_BUCKET:
            raise StorageBackendNotConfiguredError("S3_BUCKET is required")
        self._bucket = self._settings.S3_BUCKET
        self._storage = storage_client or self._build_storage_client(self._settings)
        self._sleep = sleep

    @staticmethod
    def _build_storage_client(settings: Settings) -> StorageClient:
        return S3StorageClient(settings=settings)

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def part_size(self) -> int:
        return int(self._settings.UPLOAD_PART_SIZE_BYTES)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_file(self, file_id: str) -> File:
        """Get a live (not soft-deleted) file by ID.

        Raises:
            UploadSessionNotFoundError: If the file doesn't exist or is deleted.
        """
        file = self._repo.get_active(file_id)
        if file is None:
            raise UploadSessionNotFoundError("File not found")
        return file

    def list_files_for_owner(
        self,
        user_id: str | None,
        *,
        page: int,
        size: int,
        status: str | None = None,
    ) -> tuple[list[File], int]:
        owner = self._ensure_user(user_id)
        if status is not None:
            status = self._parse_status(status)
        return self._repo.paginate_for_owner(owner, page=page, size=size, status=status)

    # ------------------------------------------------------------------
    # Multipart lifecycle
    # ------------------------------------------------------------------

    def initiate_multipart_upload(
        self,
        data: FileUploadInitData,
        *,
        user_id: str | None,
    ) -> MultipartInitResult:
        """Start a multipart upload and return one presigned URL per part.

        Args:
            data: Upload initialization parameters.
            user_id: ID of the principal initiating the upload.

        Returns:
            MultipartInitResult with the new session, provider upload id,
            storage key and the ordered part URLs.

        Raises:
            MissingUserError: If user_id is not provided.
            InvalidUploadOperationError: If parameters are invalid.
            UploadFailedError: If the object store call fails.
        """
        owner = self._ensure_user(user_id)
        self._validate_init(data)

        display_name = sanitize_filename(data.filename)
        directory = self._normalize_directory(data.directory)
        visibility = FileVisibility(data.visibility).value
        content_type = data.content_type.strip()
        total_parts = compute_total_parts(int(data.size), self.part_size)
        if total_parts > MAX_PART_NUMBER:
            raise InvalidUploadOperationError(
                f"File needs {total_parts} parts; at most {MAX_PART_NUMBER} are allowed"
            )

        key = build_storage_key(directory, display_name)
        if len(key.encode("utf-8")) > MAX_KEY_BYTES:
            raise InvalidUploadOperationError(
                f"Storage key would exceed {MAX_KEY_BYTES} bytes; "
                "use a shorter filename or directory"
            )
        log_context: dict[str, Any] = {
            "file_name": display_name,
            "bucket": self._bucket,
            "key": key,
        }

        try:
            upload = self._call_with_retry(
                "create_multipart_upload",
                lambda: self._storage.create_multipart_upload(
                    bucket=self._bucket,
                    object_key=key,
                    content_type=content_type,
                ),
            )
        except StorageError as exc:
            self._log_storage_failure("initiate_multipart_upload", exc, log_context)
            raise UploadFailedError(
                "Failed to initiate multipart upload", severity=_severity_for(exc)
            ) from exc

        try:
            parts = self._presign_parts(key, upload.upload_id, total_parts)
            file = File(
                user_id=owner,
                name=key,
                original_name=display_name,
                path=key,
                disk="s3",
                mime_type=content_type,
                size=int(data.size),
                visibility=visibility,
                status=FileStatus.INITIATED.value,
                upload_id=upload.upload_id,
                metadata_={},
            )
            self._repo.add(file)
            self._commit()
        except StorageError as exc:
            self._abort_quietly(key, upload.upload_id)
            self._log_storage_failure("initiate_multipart_upload", exc, log_context)
            raise UploadFailedError(
                "Failed to initiate multipart upload", severity=_severity_for(exc)
            ) from exc
        except SQLAlchemyError as exc:
            self._abort_quietly(key, upload.upload_id)
            logger.exception(
                "initiate_multipart_upload_persist_failed key=%s",
                key,
                extra={"extra": {**log_context, "upload_id": upload.upload_id}},
            )
            raise UploadFailedError(
                "System error during upload initiation",
                severity=FailureSeverity.FATAL,
            ) from exc

        UPLOAD_EVENTS.labels(event="initiated").inc()
        logger.info(
            "upload_initiated file_id=%s key=%s parts=%s",
            file.id,
            key,
            total_parts,
            extra={"extra": {**log_context, "file_id": file.id, "parts": total_parts}},
        )
        return MultipartInitResult(
            file=file,
            upload_id=upload.upload_id,
            key=key,
            parts=parts,
        )

    def complete_multipart_upload(
        self,
        path: str,
        parts: Sequence[CompletedPart],
    ) -> File:
        """Finalize the initiated upload stored at ``path``.

        A finalize call that still fails after the retry budget marks the
        session ``failed`` and commits that before the error is raised.

        Args:
            path: Storage key returned by initiation.
            parts: Part numbers and ETags reported by the client.

        Returns:
            The updated File with ``completed`` status.

        Raises:
            UploadSessionNotFoundError: If no initiated session uses ``path``.
            InvalidUploadOperationError: If ``parts`` is malformed.
            UploadFailedError: If the object store call fails.
        """
        file = self._repo.get_by_path(path, status=FileStatus.INITIATED)
        if file is None:
            raise UploadSessionNotFoundError("Upload session not found")

        self._validate_parts(parts)
        upload_id = str(file.upload_id or "")

        try:
            self._call_with_retry(
                "complete_multipart_upload",
                lambda: self._storage.complete_multipart_upload(
                    bucket=self._bucket,
                    object_key=file.path,
                    upload_id=upload_id,
                    parts=parts,
                ),
            )
        except StorageError as exc:
            if not self._already_assembled(file.path, exc):
                file.status = FileStatus.FAILED.value
                file.metadata_ = {
                    **dict(file.metadata_ or {}),
                    "failureCode": exc.code,
                }
                self._commit()
                UPLOAD_EVENTS.labels(event="failed").inc()
                self._log_storage_failure(
                    "complete_multipart_upload",
                    exc,
                    {"file_id": file.id, "bucket": self._bucket, "key": file.path},
                )
                raise UploadFailedError(
                    "Failed to complete multipart upload", severity=_severity_for(exc)
                ) from exc
            logger.warning(
                "complete_multipart_upload_reconciled file_id=%s key=%s",
                file.id,
                file.path,
                extra={"extra": {"file_id": file.id, "key": file.path}},
            )

        log_context: dict[str, Any] = {
            "file_id": file.id,
            "bucket": self._bucket,
            "key": file.path,
            "upload_id": upload_id,
            "parts": len(parts),
        }
        file.status = FileStatus.COMPLETED.value
        file.metadata_ = {**dict(file.metadata_ or {}), "partsCount": len(parts)}
        try:
            self._commit()
        except SQLAlchemyError as exc:
            # The object exists; a repeated complete call reconciles the row.
            logger.exception(
                "complete_multipart_upload_persist_failed key=%s",
                log_context["key"],
                extra={"extra": log_context},
            )
            raise UploadFailedError(
                "System error during upload completion",
                severity=FailureSeverity.RETRYABLE,
            ) from exc

        UPLOAD_EVENTS.labels(event="completed").inc()
        logger.info(
            "upload_completed file_id=%s key=%s parts=%s",
            file.id,
            file.path,
            len(parts),
            extra={"extra": log_context},
        )
        return file

    def abort_multipart_upload(self, path: str, *, user_id: str | None) -> File:
        """Abort the initiated upload at ``path`` and mark it ``failed``.

        Raises:
            UploadSessionNotFoundError: If no initiated session uses ``path``.
            AccessDeniedError: If the acting user is not the owner.
            UploadFailedError: If the object store call fails; the session
                is left untouched in that case.
        """
        owner = self._ensure_user(user_id)
        file = self._repo.get_by_path(path, status=FileStatus.INITIATED)
        if file is None:
            raise UploadSessionNotFoundError("Upload session not found")
        if file.user_id != owner:
            raise AccessDeniedError("Only the uploader can abort this upload")

        upload_id = str(file.upload_id or "")
        try:
            self._call_with_retry(
                "abort_multipart_upload",
                lambda: self._storage.abort_multipart_upload(
                    bucket=self._bucket,
                    object_key=file.path,
                    upload_id=upload_id,
                ),
            )
        except StorageError as exc:
            self._log_storage_failure(
                "abort_multipart_upload",
                exc,
                {"file_id": file.id, "bucket": self._bucket, "key": file.path},
            )
            raise UploadFailedError(
                "Failed to abort multipart upload", severity=_severity_for(exc)
            ) from exc

        file.status = FileStatus.FAILED.value
        file.metadata_ = {
            **dict(file.metadata_ or {}),
            "abortedAt": datetime.now(timezone.utc).isoformat(),
        }
        self._commit()
        UPLOAD_EVENTS.labels(event="aborted").inc()
        return file

    # ------------------------------------------------------------------
    # Reads and deletion
    # ------------------------------------------------------------------

    def generate_download_url(
        self, file: File, expiry_seconds: int | None = None
    ) -> str:
        """Presigned GET URL for ``file``, or ``""`` if one cannot be issued.

        The URL asks the store to serve the object as an attachment named
        after the display name. Failures are logged, not raised.
        """
        expires_in = int(
            expiry_seconds
            if expiry_seconds is not None
            else self._settings.UPLOAD_DOWNLOAD_URL_EXPIRES_SECONDS
        )
        try:
            return self._storage.presign_download(
                bucket=self._bucket,
                object_key=file.path,
                expires_in=expires_in,
                filename=file.original_name,
            )
        except StorageError as exc:
            self._log_storage_failure(
                "generate_download_url",
                exc,
                {"file_id": file.id, "bucket": self._bucket, "key": file.path},
            )
            return ""

    def delete_file(self, file: File) -> bool:
        """Delete the remote object, then soft-delete the row.

        If the remote delete fails the row and the provider upload are left
        exactly as they were and ``False`` is returned, so the call can be
        repeated.
        """
        context = {"file_id": file.id, "bucket": self._bucket, "key": file.path}

        try:
            self._storage.delete_object(bucket=self._bucket, object_key=file.path)
        except StorageError as exc:
            self._log_storage_failure("delete_file", exc, context)
            return False

        if file.status == FileStatus.INITIATED.value and file.upload_id:
            # Parts of an unfinished upload are not visible as an object.
            self._abort_quietly(file.path, file.upload_id)

        file.deleted_at = datetime.now(timezone.utc)
        try:
            self._commit()
        except SQLAlchemyError:
            logger.exception("delete_file_persist_failed", extra={"extra": context})
            return False

        UPLOAD_EVENTS.labels(event="deleted").inc()
        return True

    # ------------------------------------------------------------------
    # Raw object operations
    # ------------------------------------------------------------------

    def get_file_metadata(self, path: str) -> dict[str, Any]:
        """HEAD the object at ``path``; ``{}`` when it is missing or unreachable."""
        try:
            head = self._call_with_retry(
                "head_object",
                lambda: self._storage.head_object(bucket=self._bucket, object_key=path),
            )
        except StorageError as exc:
            self._log_storage_failure(
                "get_file_metadata", exc, {"bucket": self._bucket, "key": path}
            )
            return {}
        return {
            "path": path,
            "size": head.size_bytes,
            "etag": head.etag,
            "content_type": head.content_type,
            "last_modified": head.last_modified.isoformat() if head.last_modified else None,
        }

    def copy_file(self, source_path: str, dest_path: str) -> bool:
        """Server-side copy of an object; session rows are not touched."""
        if not source_path or not dest_path or source_path == dest_path:
            raise InvalidUploadOperationError("source and destination must differ")
        try:
            self._call_with_retry(
                "copy_object",
                lambda: self._storage.copy_object(
                    bucket=self._bucket,
                    source_key=source_path,
                    destination_key=dest_path,
                ),
            )
        except StorageError as exc:
            self._log_storage_failure(
                "copy_file",
                exc,
                {"bucket": self._bucket, "key": source_path, "destination": dest_path},
            )
            return False
        return True

    def move_file(self, source_path: str, dest_path: str) -> bool:
        """Copy then delete the source.

        A failed source delete leaves both objects in place and returns
        ``False``.
        """
        if not self.copy_file(source_path, dest_path):
            return False
        try:
            self._call_with_retry(
                "delete_object",
                lambda: self._storage.delete_object(
                    bucket=self._bucket, object_key=source_path
                ),
            )
        except StorageError as exc:
            self._log_storage_failure(
                "move_file",
                exc,
                {"bucket": self._bucket, "key": source_path, "destination": dest_path},
            )
            return False
        return True

    def list_files(self, directory: str) -> list[str]:
        """Object keys under ``directory``; ``[]`` on failure."""
        prefix = directory.strip().strip("/")
        prefix = f"{prefix}/" if prefix else ""
        try:
            return self._call_with_retry(
                "list_objects",
                lambda: self._storage.list_objects(bucket=self._bucket, prefix=prefix),
            )
        except StorageError as exc:
            self._log_storage_failure(
                "list_files", exc, {"bucket": self._bucket, "key": prefix}
            )
            return []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call_with_retry(self, operation: str, call: Callable[[], T]) -> T:
        return retry(
            self._settings.UPLOAD_RETRY_COUNT,
            self._settings.UPLOAD_RETRY_DELAY_MS,
            call,
            retry_on=(TransientStorageError,),
            on_retry=lambda attempt, exc: PROVIDER_RETRIES.labels(
                operation=operation
            ).inc(),
            sleep=self._sleep,
        )

    def _presign_parts(
        self, key: str, upload_id: str, total_parts: int
    ) -> list[PartUploadUrl]:
        expires_in = int(self._settings.UPLOAD_PART_URL_EXPIRES_SECONDS)
        return [
            PartUploadUrl(
                part_number=part_number,
                url=self._storage.presign_upload_part(
                    bucket=self._bucket,
                    object_key=key,
                    upload_id=upload_id,
                    part_number=part_number,
                    expires_in=expires_in,
                ),
            )
            for part_number in range(1, total_parts + 1)
        ]

    def _abort_quietly(self, key: str, upload_id: str) -> None:
        try:
            self._storage.abort_multipart_upload(
                bucket=self._bucket, object_key=key, upload_id=upload_id
            )
        except StorageError as exc:
            logger.warning(
                "abort_multipart_upload_failed key=%s upload_id=%s error=%s",
                key,
                upload_id,
                exc,
                extra={"extra": {**exc.context(), "upload_id": upload_id}},
            )

    def _already_assembled(self, key: str, exc: StorageError) -> bool:
        """True when the upload id is gone because the object was already built.

        Happens when a previous finalize reached the store but its commit
        did not.
        """
        if exc.code != "NoSuchUpload":
            return False
        try:
            self._storage.head_object(bucket=self._bucket, object_key=key)
        except StorageError as head_exc:
            logger.info(
                "complete_multipart_upload_object_missing key=%s error=%s",
                key,
                head_exc,
                extra={"extra": head_exc.context()},
            )
            return False
        return True

    def _normalize_directory(self, directory: str | None) -> str:
        cleaned = (directory or "").strip().strip("/")
        return cleaned or self._settings.UPLOAD_DEFAULT_DIRECTORY.strip("/")

    @staticmethod
    def _parse_status(status: str) -> str:
        try:
            return FileStatus(status).value
        except ValueError as exc:
            raise InvalidUploadOperationError(f"Unknown status '{status}'") from exc

    @staticmethod
    def _validate_init(data: FileUploadInitData) -> None:
        if not data.filename or not data.filename.strip():
            raise InvalidUploadOperationError("filename is required")
        if len(data.filename) > MAX_FILENAME_LENGTH:
            raise InvalidUploadOperationError(
                f"filename must be at most {MAX_FILENAME_LENGTH} characters"
            )
        if not data.content_type or not data.content_type.strip():
            raise InvalidUploadOperationError("content_type is required")
        if data.size is None or int(data.size) < 0:
            raise InvalidUploadOperationError("size must not be negative")
        try:
            FileVisibility(data.visibility)
        except ValueError as exc:
            raise InvalidUploadOperationError(
                "visibility must be 'public' or 'private'"
            ) from exc

    @staticmethod
    def _validate_parts(parts: Sequence[CompletedPart]) -> None:
        if not parts:
            raise InvalidUploadOperationError("parts list cannot be empty")
        seen: set[int] = set()
        for part in parts:
            if part.part_number < 1 or part.part_number > MAX_PART_NUMBER:
                raise InvalidUploadOperationError(
                    f"part_number must be between 1 and {MAX_PART_NUMBER}"
                )
            if not part.etag:
                raise InvalidUploadOperationError("every part needs an etag")
            if part.part_number in seen:
                raise InvalidUploadOperationError(
                    f"part_number {part.part_number} listed twice"
                )
            seen.add(part.part_number)

    @staticmethod
    def _log_storage_failure(
        operation: str, exc: StorageError, context: dict[str, Any]
    ) -> None:
        payload = {**exc.context(), **context, "operation": operation, "error": str(exc)}
        logger.error(
            "storage_operation_failed operation=%s bucket=%s key=%s code=%s",
            operation,
            payload.get("bucket"),
            payload.get("key"),
            exc.code,
            extra={"extra": payload},
        )
