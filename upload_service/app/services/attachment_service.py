"""Attach files to entities owned by other parts of the system.

Any object exposing ``entity_type`` and ``entity_id`` can own files; the
link is stored as a ``(fileable_type, fileable_id)`` pair so the owning
table never needs a foreign key to files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from upload_service.app.services.base import BaseService, ServiceError
from upload_service.domain.repositories.fileable_repository import FileableRepository
from upload_service.infra.db.models import File, Fileable

logger = logging.getLogger("upload_service.attachments")


class InvalidAttachmentError(ServiceError):
    """Raised when an attachment request is malformed."""


@runtime_checkable
class Attachable(Protocol):
    """Anything that can own files."""

    @property
    def entity_type(self) -> str: ...

    @property
    def entity_id(self) -> str: ...


@dataclass(frozen=True, slots=True)
class EntityRef:
    """Plain reference to an owning entity."""

    entity_type: str
    entity_id: str


class AttachmentService(BaseService):
    def __init__(
        self,
        session: Session,
        *,
        repository: FileableRepository | None = None,
    ) -> None:
        super().__init__(session)
        self._repo = repository or FileableRepository(session)

    def attach(self, file: File, entity: Attachable) -> Fileable:
        """Link ``file`` to ``entity``; linking twice returns the existing row."""
        if file.deleted_at is not None:
            raise InvalidAttachmentError("Cannot attach a deleted file")
        entity_type, entity_id = self._key(entity)

        existing = self._repo.get(file.id, entity_type, entity_id)
        if existing is not None:
            return existing

        link = self._repo.add(file.id, entity_type, entity_id)
        try:
            self._commit()
        except IntegrityError:
            existing = self._repo.get(file.id, entity_type, entity_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "file_attached file_id=%s entity=%s:%s",
            file.id,
            entity_type,
            entity_id,
            extra={
                "extra": {
                    "file_id": file.id,
                    "fileable_type": entity_type,
                    "fileable_id": entity_id,
                }
            },
        )
        return link

    def detach(self, file: File, entity: Attachable) -> bool:
        entity_type, entity_id = self._key(entity)
        removed = self._repo.remove(file.id, entity_type, entity_id)
        self._commit()
        return removed > 0

    def list_attachments(
        self, entity: Attachable, *, include_deleted: bool = False
    ) -> list[File]:
        entity_type, entity_id = self._key(entity)
        return self._repo.list_files_for_entity(
            entity_type, entity_id, include_deleted_files=include_deleted
        )

    def list_entities_for_file(self, file: File) -> list[EntityRef]:
        return [
            EntityRef(entity_type=link.fileable_type, entity_id=link.fileable_id)
            for link in self._repo.list_for_file(file.id)
        ]

    @staticmethod
    def _key(entity: Attachable) -> tuple[str, str]:
        if not isinstance(entity, Attachable):
            raise InvalidAttachmentError("entity must expose entity_type and entity_id")
        entity_type = str(entity.entity_type or "").strip()
        entity_id = str(entity.entity_id or "").strip()
        if not entity_type or not entity_id:
            raise InvalidAttachmentError("entity_type and entity_id are required")
        if len(entity_type) > 255 or len(entity_id) > 255:
            raise InvalidAttachmentError(
                "entity_type and entity_id must be at most 255 characters"
            )
        return entity_type, entity_id
