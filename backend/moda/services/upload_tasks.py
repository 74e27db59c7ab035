"""
Upload task entities

An UploadTask follows one file from enqueue to completion or failure.
Tasks are mutable and owned by the UploadQueueManager; everything handed
to subscribers or API callers is a frozen snapshot.
"""

import asyncio
import enum
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)


class TaskStatus(str, enum.Enum):
    """Forward-only: queued -> uploading -> complete | failed"""
    QUEUED = "queued"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"


class UploadPhase(str, enum.Enum):
    PREPARING = "preparing"
    CREATING_SESSION = "creating-session"
    UPLOADING = "uploading"
    COMPLETE = "complete"


class FailureKind(str, enum.Enum):
    """Why a task ended up failed"""
    STORE_UNAVAILABLE = "store-unavailable"
    FOLDER_RESOLUTION = "folder-resolution"
    TRANSPORT = "transport"
    UPLOADED_NOT_RECORDED = "uploaded-not-recorded"  # remote file exists, no metadata
    UNEXPECTED = "unexpected"


@dataclass
class FileRef:
    """
    Binary payload reference.

    Either `content` holds the bytes in memory or `path` points at a staged
    file on disk. When `temporary` is set the staged file is removed by
    `release()` once the queue is done with it.
    """
    name: str
    size: int
    mime_type: str = "application/octet-stream"
    content: Optional[bytes] = None
    path: Optional[str] = None
    temporary: bool = False

    @classmethod
    def from_bytes(cls, name: str, content: bytes, mime_type: str = "application/octet-stream") -> "FileRef":
        return cls(name=name, size=len(content), mime_type=mime_type, content=content)

    def iter_chunks(self, chunk_size: int) -> Iterator[bytes]:
        """Yield the payload in chunks of at most `chunk_size` bytes"""
        if self.content is not None:
            for offset in range(0, len(self.content), chunk_size):
                yield self.content[offset:offset + chunk_size]
            return
        if self.path is None:
            raise ValueError(f"File '{self.name}' has neither content nor a staged path")
        with open(self.path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        return b"".join(self.iter_chunks(1024 * 1024))

    async def aiter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        """`iter_chunks` for coroutines: staged files are read in a worker thread"""
        if self.content is not None or self.path is None:
            for chunk in self.iter_chunks(chunk_size):
                yield chunk
            return
        f = await asyncio.to_thread(open, self.path, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(f.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            f.close()

    async def aread_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        return await asyncio.to_thread(self.read_bytes)

    def release(self):
        """Remove the staged copy, if this reference owns one"""
        if self.temporary and self.path and os.path.exists(self.path):
            try:
                os.remove(self.path)
            except OSError as e:
                logger.warning(f"[UploadQueue] Could not remove staged file {self.path}: {e}")


@dataclass(frozen=True)
class UploadDestination:
    project_id: str
    project_name: str
    category_name: str
    discipline_name: str
    discipline_id: Optional[str] = None
    module_folder_name: Optional[str] = None
    versioned_file_name: Optional[str] = None
    # Module package naming inputs
    serial_number: Optional[str] = None
    hitch_blm: Optional[str] = None
    rear_blm: Optional[str] = None

    @property
    def discipline_key(self) -> str:
        """Value stored in Drawing.discipline"""
        return self.discipline_id or self.discipline_name


@dataclass(frozen=True)
class UploadOptions:
    """Options shared by every file of one enqueue batch"""
    project_id: str
    project_name: str
    category_name: str
    discipline_name: str
    created_by: str = "Unknown"
    discipline_id: Optional[str] = None
    module_folder_name: Optional[str] = None
    # Remote file name to use instead of the computed one (single-file batches)
    versioned_file_name: Optional[str] = None
    serial_number: Optional[str] = None
    hitch_blm: Optional[str] = None
    rear_blm: Optional[str] = None
    notes: Optional[str] = None

    def destination(self) -> UploadDestination:
        return UploadDestination(
            project_id=self.project_id,
            project_name=self.project_name,
            category_name=self.category_name,
            discipline_name=self.discipline_name,
            discipline_id=self.discipline_id,
            module_folder_name=self.module_folder_name,
            versioned_file_name=self.versioned_file_name,
            serial_number=self.serial_number,
            hitch_blm=self.hitch_blm,
            rear_blm=self.rear_blm,
        )


@dataclass(frozen=True)
class UploadProgress:
    percent: int = 0
    phase: UploadPhase = UploadPhase.PREPARING
    bytes_uploaded: int = 0
    total_bytes: int = 0
    speed_bytes_per_sec: float = 0.0


@dataclass(frozen=True)
class StoredFile:
    """What the remote store returns for an uploaded file"""
    id: str
    web_url: Optional[str] = None
    download_url: Optional[str] = None


@dataclass
class UploadTask:
    file: FileRef
    destination: UploadDestination
    created_by: str
    notes: Optional[str] = None
    id: str = field(default_factory=lambda: f"upload-{uuid.uuid4().hex}")
    status: TaskStatus = TaskStatus.QUEUED
    progress: UploadProgress = field(default_factory=UploadProgress)
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    remote_file: Optional[StoredFile] = None
    drawing_id: Optional[str] = None
    version: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def snapshot(self) -> "TaskSnapshot":
        return TaskSnapshot(
            id=self.id,
            file_name=self.file.name,
            file_size=self.file.size,
            mime_type=self.file.mime_type,
            destination=self.destination,
            created_by=self.created_by,
            status=self.status,
            progress=self.progress,
            error=self.error,
            failure_kind=self.failure_kind,
            remote_file=self.remote_file,
            drawing_id=self.drawing_id,
            version=self.version,
            start_time=self.start_time,
            end_time=self.end_time,
        )


@dataclass(frozen=True)
class TaskSnapshot:
    """Immutable copy of an UploadTask, without the payload"""
    id: str
    file_name: str
    file_size: int
    mime_type: Optional[str]
    destination: UploadDestination
    created_by: str
    status: TaskStatus
    progress: UploadProgress
    error: Optional[str]
    failure_kind: Optional[FailureKind]
    remote_file: Optional[StoredFile]
    drawing_id: Optional[str]
    version: Optional[str]
    start_time: Optional[datetime]
    end_time: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "destination": {
                "project_id": self.destination.project_id,
                "project_name": self.destination.project_name,
                "category_name": self.destination.category_name,
                "discipline_name": self.destination.discipline_name,
                "discipline_id": self.destination.discipline_id,
                "module_folder_name": self.destination.module_folder_name,
                "versioned_file_name": self.destination.versioned_file_name,
            },
            "created_by": self.created_by,
            "status": self.status.value,
            "progress": {
                "percent": self.progress.percent,
                "phase": self.progress.phase.value,
                "bytes_uploaded": self.progress.bytes_uploaded,
                "total_bytes": self.progress.total_bytes,
                "speed_bytes_per_sec": self.progress.speed_bytes_per_sec,
            },
            "error": self.error,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "remote_file": {
                "id": self.remote_file.id,
                "web_url": self.remote_file.web_url,
                "download_url": self.remote_file.download_url,
            } if self.remote_file else None,
            "drawing_id": self.drawing_id,
            "version": self.version,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


@dataclass(frozen=True)
class QueueStateSnapshot:
    queue: Tuple[TaskSnapshot, ...]
    is_processing: bool
    current_upload: Optional[TaskSnapshot]
    completed_count: int
    failed_count: int
    pending_count: int
    total_in_queue: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue": [task.to_dict() for task in self.queue],
            "is_processing": self.is_processing,
            "current_upload": self.current_upload.to_dict() if self.current_upload else None,
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "pending_count": self.pending_count,
            "total_in_queue": self.total_in_queue,
        }
