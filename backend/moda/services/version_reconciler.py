"""
Version Reconciler

Decides where an upload goes and how it is numbered, then records the
result in the metadata store once the file is in the remote store.

- Same file name in the same project/discipline = new version of the
  existing drawing ("1.0" -> "2.0"), never a second drawing
- Module package uploads go to a per-module subfolder and carry the
  version in the file name itself: Package_v2.0.pdf
- Other disciplines keep the original name unless a file in the same
  remote folder already has it, in which case a _v{N} suffix avoids
  overwriting it
- Labels come from the drawing's high-water mark, so a deleted label
  is never issued again
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from ..config import settings
from ..schemas.drawing import DrawingResponse, VersionResponse
from .errors import FolderResolutionError, MetadataReconciliationError
from .folder_paths import (
    build_folder_path,
    next_available_filename,
    next_version_label,
    parse_module_id_from_filename,
    parse_version_number,
    resolve_module_package_folder_name,
    sanitize_folder_name,
    strip_version_suffix,
    versioned_filename,
)
from .stores import MetadataStore, RemoteFileStore
from .upload_tasks import StoredFile, UploadTask

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadPlan:
    folder_path: str
    upload_file_name: str
    drawing_name: str
    version: str
    module_folder_name: Optional[str] = None
    existing_drawing: Optional[DrawingResponse] = None


@dataclass(frozen=True)
class VersionRecord:
    drawing_id: str
    version: VersionResponse
    created_drawing: bool


def latest_version(versions: Iterable[VersionResponse]) -> Optional[VersionResponse]:
    """Most recently uploaded version; label order breaks timestamp ties"""
    versions = list(versions)
    if not versions:
        return None
    return max(versions, key=lambda v: (v.uploaded_at, parse_version_number(v)))


class VersionReconciler:

    def __init__(
        self,
        metadata_store: MetadataStore,
        module_packages_discipline: Optional[str] = None,
        root_folder: Optional[str] = None,
    ):
        self.metadata_store = metadata_store
        self.module_packages_discipline = module_packages_discipline or settings.MODULE_PACKAGES_DISCIPLINE
        self.root_folder = root_folder if root_folder is not None else settings.DRAWINGS_ROOT_FOLDER

    def is_module_package(self, task: UploadTask) -> bool:
        return task.destination.discipline_name.strip().lower() == self.module_packages_discipline.strip().lower()

    def module_folder_for(self, task: UploadTask) -> Optional[str]:
        """Explicit folder name, else naming rule from serial/BLMs, else guessed from the file name"""
        dest = task.destination
        if dest.module_folder_name:
            return dest.module_folder_name
        name = resolve_module_package_folder_name(dest.serial_number, dest.hitch_blm, dest.rear_blm)
        if name:
            return name
        return parse_module_id_from_filename(task.file.name)

    async def plan(self, task: UploadTask, remote_store: RemoteFileStore) -> UploadPlan:
        """
        Work out the destination and next version, and make sure the folder exists.
        Raises FolderResolutionError; nothing has been uploaded at that point.
        """
        dest = task.destination
        try:
            module_folder = None
            drawing_name = task.file.name

            if self.is_module_package(task):
                module_folder = self.module_folder_for(task)
                if module_folder:
                    # Package_v1.0.pdf re-uploaded is a new version of Package.pdf
                    drawing_name = (
                        f"{sanitize_folder_name(module_folder)}/{strip_version_suffix(task.file.name)}"
                    )
                else:
                    logger.warning(
                        f"[Reconciler] No module id for '{task.file.name}', uploading to discipline folder"
                    )
            elif dest.module_folder_name:
                module_folder = dest.module_folder_name
                drawing_name = f"{sanitize_folder_name(module_folder)}/{task.file.name}"

            existing = await self.metadata_store.find_drawing(dest.project_id, dest.discipline_key, drawing_name)
            existing_versions = existing.versions if existing else []
            issued = [v.version for v in existing_versions]
            if existing and existing.last_version:
                issued.append(existing.last_version)
            version = next_version_label(issued)

            folder_path = build_folder_path(
                dest.project_name,
                dest.category_name,
                dest.discipline_name,
                module_folder,
                root=self.root_folder,
            )
            # Uploads replace same-named files, so any recorded name in the folder is taken
            taken = set(await self.metadata_store.file_names_in_folder(folder_path))
            taken.update(v.file_name for v in existing_versions)

            if dest.versioned_file_name:
                wanted = dest.versioned_file_name
            elif self.is_module_package(task):
                wanted = versioned_filename(task.file.name, version)
            else:
                wanted = task.file.name
            upload_name = next_available_filename(wanted, taken)

            await remote_store.ensure_folder(folder_path)
        except FolderResolutionError:
            raise
        except Exception as e:
            raise FolderResolutionError(f"Could not prepare destination folder: {e}") from e

        return UploadPlan(
            folder_path=folder_path,
            upload_file_name=upload_name,
            drawing_name=drawing_name,
            version=version,
            module_folder_name=module_folder,
            existing_drawing=existing,
        )

    async def record(
        self,
        task: UploadTask,
        plan: UploadPlan,
        stored_file: StoredFile,
        remote_store: RemoteFileStore,
    ) -> VersionRecord:
        """
        Write drawing + version rows for an uploaded file.
        Raises MetadataReconciliationError carrying `stored_file` if either write fails.
        """
        dest = task.destination
        try:
            drawing = plan.existing_drawing
            created = drawing is None
            if created:
                drawing = await self.metadata_store.create_drawing(
                    project_id=dest.project_id,
                    discipline=dest.discipline_key,
                    name=plan.drawing_name,
                    created_by=task.created_by,
                )
            version = await self.metadata_store.create_version(
                drawing_id=drawing.id,
                version=plan.version,
                file_name=plan.upload_file_name,
                file_size=task.file.size,
                mime_type=task.file.mime_type,
                storage_type=remote_store.storage_type,
                stored_file=stored_file,
                uploaded_by=task.created_by,
                notes=task.notes,
                folder_path=plan.folder_path,
            )
        except Exception as e:
            logger.error(
                f"[Reconciler] '{plan.upload_file_name}' is in the remote store (id={stored_file.id}) "
                f"but metadata failed: {e}"
            )
            raise MetadataReconciliationError(stored_file, e) from e

        try:
            await self.metadata_store.log_activity(
                action="upload" if created else "new_version",
                drawing_id=drawing.id,
                project_id=dest.project_id,
                user_name=task.created_by,
                details={
                    "name": task.file.name,
                    "file_name": plan.upload_file_name,
                    "size": task.file.size,
                    "version": plan.version,
                    "folder_path": plan.folder_path,
                },
                timestamp=datetime.utcnow(),
            )
        except Exception as e:
            logger.warning(f"[Reconciler] Activity log failed for drawing {drawing.id}: {e}")

        return VersionRecord(drawing_id=drawing.id, version=version, created_drawing=created)
