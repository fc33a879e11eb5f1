"""Viewer grant repository."""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from upload_service.infra.db.models import FileViewer


class FileViewerRepository:
    """Repository for the (file, user) read grants of private files."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, file_id: str, user_id: str) -> FileViewer | None:
        stmt = select(FileViewer).where(
            FileViewer.file_id == file_id,
            FileViewer.user_id == user_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def exists(self, file_id: str, user_id: str) -> bool:
        stmt = (
            select(FileViewer.file_id)
            .where(FileViewer.file_id == file_id, FileViewer.user_id == user_id)
            .limit(1)
        )
        return self._session.execute(stmt).first() is not None

    def add(self, file_id: str, user_id: str) -> FileViewer:
        grant = FileViewer(file_id=file_id, user_id=user_id)
        self._session.add(grant)
        return grant

    def remove(self, file_id: str, user_id: str) -> int:
        """Delete a grant; returns the number of rows removed (0 or 1)."""
        stmt = delete(FileViewer).where(
            FileViewer.file_id == file_id,
            FileViewer.user_id == user_id,
        )
        result = self._session.execute(stmt)
        return int(result.rowcount or 0)

    def list_viewers(self, file_id: str) -> list[FileViewer]:
        stmt = (
            select(FileViewer)
            .where(FileViewer.file_id == file_id)
            .order_by(FileViewer.created_at.asc(), FileViewer.user_id.asc())
        )
        return list(self._session.execute(stmt).scalars())
