"""File repository for upload session data access."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from upload_service.infra.db.models import File, FileStatus


class FileRepository:
    """Repository for File entity database operations."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, file: File) -> File:
        self._session.add(file)
        return file

    def get(self, file_id: str) -> File | None:
        """Get a file by ID, including soft-deleted rows."""
        return self._session.get(File, file_id)

    def get_active(self, file_id: str) -> File | None:
        """Get a file by ID unless it has been soft-deleted."""
        stmt = select(File).where(File.id == file_id, File.deleted_at.is_(None))
        return self._session.execute(stmt).scalar_one_or_none()

    def get_by_path(
        self,
        path: str,
        *,
        status: FileStatus | str | None = None,
    ) -> File | None:
        """Get the live file stored at ``path``.

        Args:
            path: Object key in storage.
            status: When given, only a file in this status qualifies.

        Returns:
            The File if found, None otherwise.
        """
        stmt = select(File).where(File.path == path, File.deleted_at.is_(None))
        if status is not None:
            stmt = stmt.where(File.status == FileStatus(status).value)
        return self._session.execute(stmt).scalar_one_or_none()

    def paginate_for_owner(
        self,
        user_id: str,
        *,
        page: int,
        size: int,
        status: FileStatus | str | None = None,
    ) -> tuple[list[File], int]:
        """Paginate the live files owned by ``user_id``, newest first.

        Returns:
            Tuple of (list of files, total count).
        """
        conditions = [File.user_id == user_id, File.deleted_at.is_(None)]
        if status is not None:
            conditions.append(File.status == FileStatus(status).value)

        base_stmt = (
            select(File)
            .where(*conditions)
            .order_by(File.created_at.desc(), File.id.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        count_stmt = select(func.count()).select_from(File).where(*conditions)

        items = list(self._session.execute(base_stmt).scalars())
        total = self._session.execute(count_stmt).scalar_one()
        return items, total
