"""File upload API router.

REST endpoints for the multipart upload lifecycle, download links, viewer
grants and entity attachments.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from upload_service.api.v1.deps import get_current_user_id, get_db, require_user
from upload_service.api.v1.schemas.files import (
    AttachmentIn,
    AttachmentOut,
    FileAbort,
    FileComplete,
    FileDetailOut,
    FileInitiate,
    FileOut,
    FilesPage,
    InitiateOut,
    PartUrlOut,
    ViewerAdd,
    ViewerOut,
)
from upload_service.app.services.access_service import AccessService, InvalidViewerError
from upload_service.app.services.attachment_service import (
    EntityRef,
    InvalidAttachmentError,
)
from upload_service.app.services.base import AccessDeniedError, MissingUserError
from upload_service.app.services.bundle import get_service_bundle
from upload_service.app.services.file_service import (
    FileService,
    FileUploadInitData,
    InvalidUploadOperationError,
    UploadFailedError,
    UploadSessionNotFoundError,
)
from upload_service.infra.db.models import File
from upload_service.infra.storage.client import CompletedPart

router = APIRouter(prefix="/files")


def _upload_failed(exc: UploadFailedError) -> HTTPException:
    status_code = 503 if exc.retryable else 502
    return HTTPException(
        status_code=status_code,
        detail={
            "message": str(exc),
            "severity": exc.severity.value,
            "error_code": "upload_failed",
        },
    )


def _load_file(file_service: FileService, file_id: str) -> File:
    try:
        return file_service.get_file(file_id)
    except UploadSessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _load_owned_file(
    file_service: FileService,
    access_service: AccessService,
    file_id: str,
    user_id: str,
) -> File:
    file = _load_file(file_service, file_id)
    try:
        access_service.ensure_owner(file, user_id)
    except AccessDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    return file


@router.post(
    "/initiate",
    response_model=InitiateOut,
    summary="Initiate multipart upload",
    description="Start a multipart upload and return one presigned URL per part.",
)
def initiate_upload(
    payload: FileInitiate,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> InitiateOut:
    file_service = get_service_bundle(db).file()
    data = FileUploadInitData(
        filename=payload.filename,
        content_type=payload.content_type,
        size=payload.size,
        directory=payload.directory,
        visibility=payload.visibility,
    )
    try:
        result = file_service.initiate_multipart_upload(data, user_id=user_id)
    except (InvalidUploadOperationError, MissingUserError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UploadFailedError as exc:
        raise _upload_failed(exc) from exc

    return InitiateOut(
        file_id=result.file_id,
        upload_id=result.upload_id,
        key=result.key,
        parts=[PartUrlOut(part_number=p.part_number, url=p.url) for p in result.parts],
    )


@router.post(
    "/complete",
    response_model=FileOut,
    summary="Complete multipart upload",
    description="Combine the uploaded parts into the final object.",
)
def complete_upload(
    payload: FileComplete,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> FileOut:
    file_service = get_service_bundle(db).file()
    parts = [CompletedPart(part_number=p.part_number, etag=p.etag) for p in payload.parts]
    try:
        file = file_service.complete_multipart_upload(payload.path, parts)
    except UploadSessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidUploadOperationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except UploadFailedError as exc:
        raise _upload_failed(exc) from exc
    return FileOut.model_validate(file)


@router.post(
    "/abort",
    response_model=FileOut,
    summary="Abort multipart upload",
    description="Discard the uploaded parts and mark the session failed.",
)
def abort_upload(
    payload: FileAbort,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> FileOut:
    file_service = get_service_bundle(db).file()
    try:
        file = file_service.abort_multipart_upload(payload.path, user_id=user_id)
    except UploadSessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AccessDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except UploadFailedError as exc:
        raise _upload_failed(exc) from exc
    return FileOut.model_validate(file)


@router.get(
    "",
    response_model=FilesPage,
    summary="List my files",
    description="Paginated list of the caller's upload sessions, newest first.",
)
def list_files(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: str | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> FilesPage:
    file_service = get_service_bundle(db).file()
    try:
        items, total = file_service.list_files_for_owner(
            user_id, page=page, size=size, status=status_filter
        )
    except InvalidUploadOperationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return FilesPage(
        page=page,
        size=size,
        total=total,
        items=[FileOut.model_validate(item) for item in items],
    )


@router.get(
    "/{file_id}",
    response_model=FileDetailOut,
    summary="Get file",
    description="File metadata plus a presigned download URL, if the caller may read it.",
)
def get_file(
    file_id: str,
    db: Session = Depends(get_db),
    user_id: str | None = Depends(get_current_user_id),
) -> FileDetailOut:
    services = get_service_bundle(db)
    file_service = services.file()
    file = _load_file(file_service, file_id)
    try:
        services.access().ensure_can_read(file, user_id)
    except AccessDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc

    download_url = ""
    if file.status == "completed":
        download_url = file_service.generate_download_url(file)
    return FileDetailOut(file=FileOut.model_validate(file), download_url=download_url)


@router.delete(
    "/{file_id}",
    response_model=FileOut,
    summary="Delete file",
    description="Delete the stored object and soft-delete the session (owner only).",
)
def delete_file(
    file_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> FileOut:
    services = get_service_bundle(db)
    file_service = services.file()
    file = _load_owned_file(file_service, services.access(), file_id, user_id)
    if not file_service.delete_file(file):
        raise HTTPException(
            status_code=502,
            detail={
                "message": "Failed to delete file from storage",
                "error_code": "storage_delete_failed",
            },
        )
    return FileOut.model_validate(file)


@router.get(
    "/{file_id}/viewers",
    response_model=list[ViewerOut],
    summary="List viewers",
)
def list_viewers(
    file_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> list[ViewerOut]:
    services = get_service_bundle(db)
    access_service = services.access()
    file = _load_owned_file(services.file(), access_service, file_id, user_id)
    grants = access_service.list_viewers(file, user_id=user_id)
    return [ViewerOut.model_validate(grant) for grant in grants]


@router.post(
    "/{file_id}/viewers",
    response_model=ViewerOut,
    status_code=status.HTTP_201_CREATED,
    summary="Grant read access",
)
def add_viewer(
    file_id: str,
    payload: ViewerAdd,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> ViewerOut:
    services = get_service_bundle(db)
    access_service = services.access()
    file = _load_owned_file(services.file(), access_service, file_id, user_id)
    try:
        grant = access_service.add_viewer(file, payload.user_id, user_id=user_id)
    except InvalidViewerError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ViewerOut.model_validate(grant)


@router.delete(
    "/{file_id}/viewers/{viewer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke read access",
)
def remove_viewer(
    file_id: str,
    viewer_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> None:
    services = get_service_bundle(db)
    access_service = services.access()
    file = _load_owned_file(services.file(), access_service, file_id, user_id)
    try:
        access_service.remove_viewer(file, viewer_id, user_id=user_id)
    except InvalidViewerError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return None


@router.post(
    "/{file_id}/attachments",
    response_model=AttachmentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Attach file to an entity",
)
def attach_file(
    file_id: str,
    payload: AttachmentIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> AttachmentOut:
    services = get_service_bundle(db)
    file = _load_owned_file(services.file(), services.access(), file_id, user_id)
    entity = EntityRef(entity_type=payload.entity_type, entity_id=payload.entity_id)
    try:
        link = services.attachment().attach(file, entity)
    except InvalidAttachmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AttachmentOut.model_validate(link)


@router.delete(
    "/{file_id}/attachments/{entity_type}/{entity_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Detach file from an entity",
)
def detach_file(
    file_id: str,
    entity_type: str,
    entity_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(require_user),
) -> None:
    services = get_service_bundle(db)
    file = _load_owned_file(services.file(), services.access(), file_id, user_id)
    entity = EntityRef(entity_type=entity_type, entity_id=entity_id)
    try:
        services.attachment().detach(file, entity)
    except InvalidAttachmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return None
