from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from upload_service.app.services.base import AccessDeniedError, BaseService, ServiceError
from upload_service.domain.repositories.file_viewer_repository import FileViewerRepository
from upload_service.infra.db.models import File, FileViewer

logger = logging.getLogger("upload_service.access")


class InvalidViewerError(ServiceError):
    """Raised when a viewer grant request is malformed."""


class AccessService(BaseService):
    """Read permissions for files.

    A live file is readable by anyone when it is public. A private file is
    readable by its owner and by users holding an explicit viewer grant.
    Only the owner manages grants.
    """

    def __init__(
        self,
        session: Session,
        *,
        viewer_repository: FileViewerRepository | None = None,
    ) -> None:
        super().__init__(session)
        self._viewers = viewer_repository or FileViewerRepository(session)

    def can_read(self, file: File, user_id: str | None) -> bool:
        if file.deleted_at is not None:
            return False
        if file.is_public:
            return True
        if user_id is None or not str(user_id).strip():
            return False
        user_id = str(user_id).strip()
        if file.user_id == user_id:
            return True
        return self._viewers.exists(file.id, user_id)

    def ensure_can_read(self, file: File, user_id: str | None) -> None:
        if not self.can_read(file, user_id):
            raise AccessDeniedError("You do not have access to this file")

    def ensure_owner(self, file: File, user_id: str | None) -> str:
        owner = self._ensure_user(user_id)
        if file.user_id != owner:
            raise AccessDeniedError("Only the owner can manage this file")
        return owner

    def add_viewer(self, file: File, viewer_id: str, *, user_id: str | None) -> FileViewer:
        """Grant ``viewer_id`` read access; granting twice is a no-op."""
        self.ensure_owner(file, user_id)
        viewer = self._clean_viewer(viewer_id)

        existing = self._viewers.get(file.id, viewer)
        if existing is not None:
            return existing

        grant = self._viewers.add(file.id, viewer)
        try:
            self._commit()
        except IntegrityError:
            # A concurrent request created the same grant first.
            existing = self._viewers.get(file.id, viewer)
            if existing is None:
                raise
            return existing

        logger.info(
            "viewer_added file_id=%s viewer=%s",
            file.id,
            viewer,
            extra={"extra": {"file_id": file.id, "viewer": viewer}},
        )
        return grant

    def remove_viewer(self, file: File, viewer_id: str, *, user_id: str | None) -> bool:
        """Revoke a grant. Returns False when there was nothing to revoke."""
        self.ensure_owner(file, user_id)
        viewer = self._clean_viewer(viewer_id)
        removed = self._viewers.remove(file.id, viewer)
        self._commit()
        if removed:
            logger.info(
                "viewer_removed file_id=%s viewer=%s",
                file.id,
                viewer,
                extra={"extra": {"file_id": file.id, "viewer": viewer}},
            )
        return removed > 0

    def list_viewers(self, file: File, *, user_id: str | None) -> list[FileViewer]:
        self.ensure_owner(file, user_id)
        return self._viewers.list_viewers(file.id)

    @staticmethod
    def _clean_viewer(viewer_id: str) -> str:
        viewer = (viewer_id or "").strip()
        if not viewer:
            raise InvalidViewerError("viewer user_id is required")
        if len(viewer) > 255:
            raise InvalidViewerError("viewer user_id must be at most 255 characters")
        return viewer
