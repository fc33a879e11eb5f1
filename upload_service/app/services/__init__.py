from .access_service import AccessService, InvalidViewerError
from .attachment_service import (
    Attachable,
    AttachmentService,
    EntityRef,
    InvalidAttachmentError,
)
from .base import (
    AccessDeniedError,
    BaseService,
    FailureSeverity,
    MissingUserError,
    ServiceError,
)
from .bundle import ServiceBundle, get_service_bundle
from .file_service import (
    FileService,
    FileUploadInitData,
    InvalidUploadOperationError,
    MultipartInitResult,
    PartUploadUrl,
    StorageBackendNotConfiguredError,
    UploadFailedError,
    UploadSessionNotFoundError,
)

__all__ = [
    "AccessDeniedError",
    "AccessService",
    "Attachable",
    "AttachmentService",
    "BaseService",
    "EntityRef",
    "FailureSeverity",
    "FileService",
    "FileUploadInitData",
    "InvalidAttachmentError",
    "InvalidUploadOperationError",
    "InvalidViewerError",
    "MissingUserError",
    "MultipartInitResult",
    "PartUploadUrl",
    "ServiceBundle",
    "ServiceError",
    "StorageBackendNotConfiguredError",
    "UploadFailedError",
    "UploadSessionNotFoundError",
    "get_service_bundle",
]
