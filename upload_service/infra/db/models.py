from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from upload_service.common.config import get_settings
from upload_service.infra.db.base import Base, SoftDeleteMixin, TimestampMixin

METADATA_JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")

# Table names are fixed once, when the models are first imported.
TABLES_PREFIX = get_settings().UPLOAD_TABLES_PREFIX
FILES_TABLE = f"{TABLES_PREFIX}files"
FILE_VIEWERS_TABLE = f"{TABLES_PREFIX}file_viewers"
FILEABLES_TABLE = f"{TABLES_PREFIX}fileables"


class FileStatus(str, Enum):
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"


class FileVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


def _new_file_id() -> str:
    return str(uuid.uuid4())


class File(Base, TimestampMixin, SoftDeleteMixin):
    """One tracked multipart upload and its outcome.

    Fields
    -------
    id : Opaque UUID assigned at creation.
    user_id : Principal that initiated the upload (the owner).
    name : Name of the object in storage (same as ``path``).
    original_name : Caller-supplied filename with markup characters escaped.
    path : Object key in the bucket; unique among live rows.
    disk : Storage backend identifier.
    mime_type / size : Content type and declared size from initiation
        (size 0 means unknown).
    visibility : ``public`` or ``private``.
    status : ``initiated``, ``completed`` or ``failed``.
    upload_id : Provider multipart upload handle, kept after completion.
    metadata_ : Extra JSON written by the orchestrator (``partsCount``...).
    created_at / updated_at / deleted_at : Audit timestamps and soft delete.
    """

    __tablename__ = FILES_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_file_id)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    path: Mapped[str] = mapped_column(String(1024), nullable=False)
    disk: Mapped[str] = mapped_column(String(32), nullable=False, default="s3")
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    visibility: Mapped[str] = mapped_column(
        String(16), nullable=False, default=FileVisibility.PRIVATE.value
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=FileStatus.INITIATED.value
    )
    upload_id: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    # "metadata" is reserved on declarative classes, hence the trailing underscore.
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", METADATA_JSON_TYPE, default=dict, nullable=False
    )

    __table_args__ = (
        Index(f"ix_{FILES_TABLE}_path", "path"),
        Index(f"ix_{FILES_TABLE}_status", "status"),
        Index(f"ix_{FILES_TABLE}_user_id", "user_id"),
        Index(
            f"uq_{FILES_TABLE}_path_active",
            "path",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    @property
    def is_public(self) -> bool:
        return self.visibility == FileVisibility.PUBLIC.value


class FileViewer(Base, TimestampMixin):
    """Explicit read grant on a private file for one user.

    ``created_at`` is the moment the grant was given.
    """

    __tablename__ = FILE_VIEWERS_TABLE

    file_id: Mapped[str] = mapped_column(
        String(36), ForeignKey(f"{FILES_TABLE}.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    __table_args__ = (Index(f"ix_{FILE_VIEWERS_TABLE}_user_id", "user_id"),)


class Fileable(Base, TimestampMixin):
    """Polymorphic link between a file and an owning entity."""

    __tablename__ = FILEABLES_TABLE

    file_id: Mapped[str] = mapped_column(
        String(36), ForeignKey(f"{FILES_TABLE}.id", ondelete="CASCADE"), primary_key=True
    )
    fileable_type: Mapped[str] = mapped_column(String(255), primary_key=True)
    fileable_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    __table_args__ = (
        Index(f"ix_{FILEABLES_TABLE}_fileable", "fileable_type", "fileable_id"),
    )
