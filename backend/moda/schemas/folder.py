# moda/schemas/folder.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from ..models.folder import FolderType

# Request schemas
class FolderCreate(BaseModel):
    """Schema for creating a folder node"""
    name: str = Field(..., min_length=1, max_length=255)
    folder_type: FolderType
    parent_id: Optional[str] = None
    color: Optional[str] = None
    sort_order: int = 0
    created_by: Optional[str] = None

class FolderUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    color: Optional[str] = None
    sort_order: Optional[int] = None

class ModuleFolderCreate(BaseModel):
    """
    Schema for creating a module package folder.
    The folder name is derived from the serial number and BLM tags.
    """
    discipline_folder_id: str
    serial_number: str
    hitch_blm: Optional[str] = None
    rear_blm: Optional[str] = None
    created_by: Optional[str] = None

class FolderDefaultsRequest(BaseModel):
    created_by: Optional[str] = None

# Response schemas
class FolderResponse(BaseModel):
    id: str
    project_id: str
    parent_id: Optional[str] = None
    name: str
    folder_type: FolderType
    color: Optional[str] = None
    sort_order: int = 0
    is_default: bool = False
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
