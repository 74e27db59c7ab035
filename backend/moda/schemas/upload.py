# moda/schemas/upload.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List
from ..services.upload_tasks import TaskStatus, UploadPhase, FailureKind

# Response schemas
class UploadProgressResponse(BaseModel):
    percent: int
    phase: UploadPhase
    bytes_uploaded: int = 0
    total_bytes: int = 0
    speed_bytes_per_sec: float = 0.0

    class Config:
        from_attributes = True

class UploadDestinationResponse(BaseModel):
    project_id: str
    project_name: str
    category_name: str
    discipline_name: str
    discipline_id: Optional[str] = None
    module_folder_name: Optional[str] = None
    versioned_file_name: Optional[str] = None

    class Config:
        from_attributes = True

class StoredFileResponse(BaseModel):
    id: str
    web_url: Optional[str] = None
    download_url: Optional[str] = None

    class Config:
        from_attributes = True

class UploadTaskResponse(BaseModel):
    """Schema for one queued/in-flight/finished upload"""
    id: str
    file_name: str
    file_size: int
    mime_type: Optional[str] = None
    destination: UploadDestinationResponse
    created_by: str
    status: TaskStatus
    progress: UploadProgressResponse
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    remote_file: Optional[StoredFileResponse] = None
    drawing_id: Optional[str] = None
    version: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    class Config:
        from_attributes = True

class QueueStateResponse(BaseModel):
    """Schema for the upload queue snapshot"""
    queue: List[UploadTaskResponse]
    is_processing: bool
    current_upload: Optional[UploadTaskResponse] = None
    completed_count: int
    failed_count: int
    pending_count: int
    total_in_queue: int

    class Config:
        from_attributes = True

class EnqueueResponse(BaseModel):
    task_ids: List[str]
    pending_count: int
