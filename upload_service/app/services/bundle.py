from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from upload_service.domain.repositories import (
    FileableRepository,
    FileRepository,
    FileViewerRepository,
)

from .access_service import AccessService
from .attachment_service import AttachmentService
from .file_service import FileService


@dataclass
class ServiceBundle:
    """Lazily constructs application services sharing the same session."""

    session: Session
    _file: FileService | None = field(default=None, init=False, repr=False)
    _access: AccessService | None = field(default=None, init=False, repr=False)
    _attachment: AttachmentService | None = field(default=None, init=False, repr=False)

    def file(self) -> FileService:
        if self._file is None:
            repo = FileRepository(self.session)
            self._file = FileService(self.session, repository=repo)
        return self._file

    def access(self) -> AccessService:
        if self._access is None:
            viewer_repo = FileViewerRepository(self.session)
            self._access = AccessService(self.session, viewer_repository=viewer_repo)
        return self._access

    def attachment(self) -> AttachmentService:
        if self._attachment is None:
            repo = FileableRepository(self.session)
            self._attachment = AttachmentService(self.session, repository=repo)
        return self._attachment


def get_service_bundle(session: Session) -> ServiceBundle:
    return ServiceBundle(session=session)
