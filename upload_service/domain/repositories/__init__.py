from .file_repository import FileRepository
from .file_viewer_repository import FileViewerRepository
from .fileable_repository import FileableRepository

__all__ = [
    "FileRepository",
    "FileViewerRepository",
    "FileableRepository",
]
