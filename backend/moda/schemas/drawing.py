# moda/schemas/drawing.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List
from ..models.drawing import StorageType

# Response schemas
class VersionResponse(BaseModel):
    """Schema for a single drawing version"""
    id: str
    drawing_id: str
    version: str
    file_name: str
    file_size: int
    mime_type: Optional[str] = None
    storage_type: StorageType
    storage_path: Optional[str] = None
    folder_path: Optional[str] = None
    remote_file_id: Optional[str] = None
    web_url: Optional[str] = None
    download_url: Optional[str] = None
    uploaded_by: Optional[str] = None
    uploaded_at: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True

class DrawingBasicResponse(BaseModel):
    """
    Lightweight drawing schema without versions.
    Use this for listings where version history is not needed.
    """
    id: str
    project_id: str
    discipline: str
    name: str
    description: Optional[str] = None
    created_by: Optional[str] = None
    last_version: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class DrawingResponse(DrawingBasicResponse):
    """Complete drawing schema including its version history"""
    versions: List[VersionResponse] = []

# Request schemas
class DrawingUpdate(BaseModel):
    """Schema for renaming or describing a drawing"""
    name: Optional[str] = None
    description: Optional[str] = None

class UrlResponse(BaseModel):
    url: str
