"""Pydantic schemas for the file upload endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class FileInitiate(BaseModel):
    """Request body for initiating a multipart upload."""

    filename: str = Field(min_length=1, max_length=255)
    content_type: str = Field(min_length=1, max_length=255)
    size: int = Field(ge=0, description="Declared size in bytes; 0 when unknown")
    directory: str | None = Field(default=None, max_length=512)
    visibility: Literal["public", "private"] = "private"


class PartUrlOut(BaseModel):
    part_number: int
    url: str


class InitiateOut(BaseModel):
    """Response model for multipart upload initiation."""

    file_id: str
    upload_id: str
    key: str
    parts: list[PartUrlOut]


class FileCompletePart(BaseModel):
    part_number: int = Field(ge=1, le=10000)
    etag: str = Field(min_length=1)


class FileComplete(BaseModel):
    """Request body for completing a multipart upload."""

    path: str = Field(min_length=1)
    parts: list[FileCompletePart] = Field(min_length=1)


class FileAbort(BaseModel):
    path: str = Field(min_length=1)


class FileOut(BaseModel):
    """Response model for an upload session."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    original_name: str
    path: str
    disk: str
    mime_type: str | None = None
    size: int
    visibility: str
    status: str
    upload_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None


class FileDetailOut(BaseModel):
    file: FileOut
    download_url: str


class FilesPage(BaseModel):
    """Paginated list of upload sessions."""

    page: int
    size: int
    total: int
    items: list[FileOut]


class ViewerAdd(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)


class ViewerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_id: str
    user_id: str
    created_at: datetime


class AttachmentIn(BaseModel):
    entity_type: str = Field(min_length=1, max_length=255)
    entity_id: str = Field(min_length=1, max_length=255)


class AttachmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_id: str
    fileable_type: str
    fileable_id: str
    created_at: datetime
