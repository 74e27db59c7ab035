"""
Collaborator interfaces for the upload queue

RemoteFileStore: where the binary files live (SharePoint document library,
or a local directory during development).
MetadataStore: where drawings, versions and activity entries are recorded.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, runtime_checkable

from ..config import settings
from ..models.drawing import StorageType
from ..schemas.drawing import DrawingResponse, VersionResponse
from .upload_tasks import FileRef, StoredFile, UploadProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]


@dataclass(frozen=True)
class UploadTarget:
    """Where a single file goes inside the remote store"""
    folder_path: str
    file_name: str


@runtime_checkable
class RemoteFileStore(Protocol):
    storage_type: StorageType

    def is_available(self) -> bool: ...

    async def ensure_folder(self, folder_path: str) -> None:
        """Create every missing level of `folder_path`. Idempotent."""
        ...

    async def upload_file(
        self,
        file: FileRef,
        target: UploadTarget,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StoredFile: ...

    async def delete_file(self, file_id: str) -> None: ...

    async def get_download_url(self, file_id: str) -> str: ...

    async def get_preview_url(self, file_id: str) -> str: ...


@runtime_checkable
class MetadataStore(Protocol):

    async def find_drawing(self, project_id: str, discipline: str, name: str) -> Optional[DrawingResponse]:
        """Drawing with this name (case-insensitive) in the project/discipline, with versions"""
        ...

    async def create_drawing(
        self,
        project_id: str,
        discipline: str,
        name: str,
        created_by: str,
        description: str = "",
    ) -> DrawingResponse: ...

    async def create_version(
        self,
        drawing_id: str,
        version: str,
        file_name: str,
        file_size: int,
        mime_type: Optional[str],
        storage_type: StorageType,
        stored_file: StoredFile,
        uploaded_by: str,
        notes: Optional[str] = None,
        folder_path: Optional[str] = None,
    ) -> VersionResponse:
        """Add a version and raise the drawing's `last_version` mark if this label is higher"""
        ...

    async def file_names_in_folder(self, folder_path: str) -> Set[str]:
        """Remote file names already recorded in `folder_path`, across every drawing"""
        ...

    async def log_activity(
        self,
        action: str,
        drawing_id: Optional[str],
        project_id: Optional[str],
        user_name: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None: ...


def storage_path_for(storage_type: StorageType, stored_file: StoredFile) -> str:
    """Tagged pointer saved on the version row, e.g. "sharepoint:https://..." """
    return f"{storage_type.value}:{stored_file.web_url or stored_file.id}"


def create_remote_store(backend: Optional[str] = None) -> RemoteFileStore:
    """Build the remote store selected by STORAGE_BACKEND"""
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend == StorageType.SHAREPOINT.value:
        from .sharepoint_store import SharePointFileStore
        return SharePointFileStore.from_settings(settings)
    if backend == StorageType.LOCAL.value:
        from .local_store import LocalFileStore
        return LocalFileStore(settings.UPLOAD_DIR)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
