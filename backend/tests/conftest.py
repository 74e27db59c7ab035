"""Pytest configuration and fixtures for the drawings upload service tests."""

import asyncio
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from moda.database import create_db_engine, init_db
from moda.models.drawing import StorageType
from moda.schemas.drawing import DrawingResponse, VersionResponse
from moda.services.errors import RemoteStoreError
from moda.services.folder_paths import parse_version_number
from moda.services.stores import UploadTarget
from moda.services.upload_queue import UploadQueueManager
from moda.services.upload_tasks import FileRef, StoredFile, UploadOptions, UploadPhase, UploadProgress
from moda.services.version_reconciler import VersionReconciler


class FakeRemoteStore:
    """In-memory RemoteFileStore that records every call."""

    storage_type = StorageType.SHAREPOINT

    def __init__(self):
        self.available = True
        self.fail_on: Dict[str, Exception] = {}  # file name -> error raised by upload_file
        self.folder_error: Optional[Exception] = None
        self.gate: Optional[threading.Event] = None  # uploads hold until it is set
        self.started = asyncio.Event()
        self.progress_steps = [25, 50, 75]
        self.folders: List[str] = []
        self.uploads: List[UploadTarget] = []
        self.upload_order: List[str] = []
        self.deleted: List[str] = []
        self.active = 0
        self.max_active = 0

    def is_available(self) -> bool:
        return self.available

    async def ensure_folder(self, folder_path: str) -> None:
        if self.folder_error:
            raise self.folder_error
        self.folders.append(folder_path)

    async def upload_file(self, file, target, on_progress=None) -> StoredFile:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.upload_order.append(file.name)
        self.started.set()
        try:
            if self.gate is not None:
                while not self.gate.is_set():
                    await asyncio.sleep(0.001)
            for percent in self.progress_steps:
                if on_progress:
                    on_progress(UploadProgress(
                        percent=percent,
                        phase=UploadPhase.UPLOADING,
                        bytes_uploaded=file.size * percent // 100,
                        total_bytes=file.size,
                        speed_bytes_per_sec=1024.0,
                    ))
                await asyncio.sleep(0)
            if file.name in self.fail_on:
                raise self.fail_on[file.name]
            self.uploads.append(target)
            file_id = f"item-{len(self.uploads)}"
            return StoredFile(
                id=file_id,
                web_url=f"https://example.sharepoint.com/{target.folder_path}/{target.file_name}",
                download_url=f"https://download.example.com/{file_id}",
            )
        finally:
            self.active -= 1

    async def delete_file(self, file_id: str) -> None:
        self.deleted.append(file_id)

    async def get_download_url(self, file_id: str) -> str:
        return f"https://download.example.com/{file_id}"

    async def get_preview_url(self, file_id: str) -> str:
        return f"https://preview.example.com/{file_id}"


class FakeMetadataStore:
    """In-memory MetadataStore with switchable failures."""

    def __init__(self):
        self.drawings: Dict[str, DrawingResponse] = {}
        self.activity: List[dict] = []
        self.fail_create_drawing: Optional[Exception] = None
        self.fail_create_version: Optional[Exception] = None
        self.fail_log_activity: Optional[Exception] = None
        self.fail_find: Optional[Exception] = None

    async def find_drawing(self, project_id, discipline, name):
        if self.fail_find:
            raise self.fail_find
        for drawing in self.drawings.values():
            if (drawing.project_id == project_id and drawing.discipline == discipline
                    and drawing.name.lower() == name.lower()):
                return drawing.model_copy(deep=True)
        return None

    async def create_drawing(self, project_id, discipline, name, created_by, description=""):
        if self.fail_create_drawing:
            raise self.fail_create_drawing
        drawing = DrawingResponse(
            id=str(uuid4()),
            project_id=project_id,
            discipline=discipline,
            name=name,
            description=description,
            created_by=created_by,
            created_at=datetime.utcnow(),
            versions=[],
        )
        self.drawings[drawing.id] = drawing
        return drawing

    async def create_version(self, drawing_id, version, file_name, file_size, mime_type,
                             storage_type, stored_file, uploaded_by, notes=None, folder_path=None):
        if self.fail_create_version:
            raise self.fail_create_version
        drawing = self.drawings[drawing_id]
        record = VersionResponse(
            id=str(uuid4()),
            drawing_id=drawing_id,
            version=version,
            file_name=file_name,
            file_size=file_size,
            mime_type=mime_type,
            storage_type=storage_type,
            storage_path=f"{storage_type.value}:{stored_file.web_url}",
            folder_path=folder_path,
            remote_file_id=stored_file.id,
            web_url=stored_file.web_url,
            download_url=stored_file.download_url,
            uploaded_by=uploaded_by,
            # strictly increasing so "latest" is well defined
            uploaded_at=datetime.utcnow() + timedelta(microseconds=len(drawing.versions)),
            notes=notes,
        )
        drawing.versions.append(record)
        if parse_version_number(version) > parse_version_number(drawing.last_version):
            drawing.last_version = version
        return record

    def delete_version(self, drawing_id, label):
        drawing = self.drawings[drawing_id]
        drawing.versions = [v for v in drawing.versions if v.version != label]

    async def file_names_in_folder(self, folder_path):
        return {
            v.file_name
            for drawing in self.drawings.values()
            for v in drawing.versions
            if v.folder_path and v.folder_path.lower() == folder_path.lower()
        }

    async def log_activity(self, action, drawing_id, project_id, user_name, details=None, timestamp=None):
        if self.fail_log_activity:
            raise self.fail_log_activity
        self.activity.append({
            "action": action,
            "drawing_id": drawing_id,
            "project_id": project_id,
            "user_name": user_name,
            "details": details or {},
        })


COMPLETED_TTL = 0.05
FAILED_TTL = 0.25


@pytest.fixture
def remote_store():
    return FakeRemoteStore()


@pytest.fixture
def metadata_store():
    return FakeMetadataStore()


@pytest.fixture
def reconciler(metadata_store):
    return VersionReconciler(metadata_store, module_packages_discipline="Module Packages", root_folder="MODA Drawings")


@pytest.fixture
def queue(remote_store, reconciler):
    return UploadQueueManager(
        remote_store=remote_store,
        reconciler=reconciler,
        completed_ttl=COMPLETED_TTL,
        failed_ttl=FAILED_TTL,
    )


@pytest.fixture
def upload_options():
    return UploadOptions(
        project_id="proj-1",
        project_name="Locke Lofts",
        category_name="Permit Drawings",
        discipline_name="Electrical Submittal",
        created_by="Jane Smith",
    )


@pytest.fixture
def make_file():
    def _make(name: str, content: bytes = b"%PDF-1.7 drawing", mime_type: str = "application/pdf") -> FileRef:
        return FileRef.from_bytes(name, content, mime_type)
    return _make


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


def raise_transport(message: str = "Failed to upload file: 503 Service Unavailable") -> RemoteStoreError:
    return RemoteStoreError(message, status_code=503)
