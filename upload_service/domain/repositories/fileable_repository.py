"""Attachment (fileable) repository.

Links files to arbitrary owning entities identified by a
``(fileable_type, fileable_id)`` pair.
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from upload_service.infra.db.models import File, Fileable


class FileableRepository:
    """Repository for polymorphic file attachments."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, file_id: str, fileable_type: str, fileable_id: str) -> Fileable | None:
        stmt = select(Fileable).where(
            Fileable.file_id == file_id,
            Fileable.fileable_type == fileable_type,
            Fileable.fileable_id == fileable_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def add(self, file_id: str, fileable_type: str, fileable_id: str) -> Fileable:
        link = Fileable(
            file_id=file_id,
            fileable_type=fileable_type,
            fileable_id=fileable_id,
        )
        self._session.add(link)
        return link

    def remove(self, file_id: str, fileable_type: str, fileable_id: str) -> int:
        stmt = delete(Fileable).where(
            Fileable.file_id == file_id,
            Fileable.fileable_type == fileable_type,
            Fileable.fileable_id == fileable_id,
        )
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)

    def list_files_for_entity(
        self,
        fileable_type: str,
        fileable_id: str,
        *,
        include_deleted_files: bool = False,
    ) -> list[File]:
        """List the files attached to an entity, oldest attachment first.

        Args:
            fileable_type: Entity type (e.g. ``post``).
            fileable_id: Entity identifier.
            include_deleted_files: Include soft-deleted files.

        Returns:
            List of File entities.
        """
        stmt = (
            select(File)
            .join(Fileable, Fileable.file_id == File.id)
            .where(
                Fileable.fileable_type == fileable_type,
                Fileable.fileable_id == fileable_id,
            )
            .order_by(Fileable.created_at.asc(), File.id.asc())
        )
        if not include_deleted_files:
            stmt = stmt.where(File.deleted_at.is_(None))
        return list(self._session.execute(stmt).scalars())

    def list_for_file(self, file_id: str) -> list[Fileable]:
        stmt = (
            select(Fileable)
            .where(Fileable.file_id == file_id)
            .order_by(Fileable.fileable_type.asc(), Fileable.fileable_id.asc())
        )
        return list(self._session.execute(stmt).scalars())
