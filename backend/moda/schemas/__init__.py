# moda/schemas/__init__.py
from .drawing import DrawingResponse, DrawingBasicResponse, DrawingUpdate, VersionResponse, UrlResponse
from .folder import FolderCreate, FolderUpdate, FolderResponse, ModuleFolderCreate
from .upload import QueueStateResponse, UploadTaskResponse, EnqueueResponse

__all__ = [
    "DrawingResponse",
    "DrawingBasicResponse",
    "DrawingUpdate",
    "VersionResponse",
    "UrlResponse",
    "FolderCreate",
    "FolderUpdate",
    "FolderResponse",
    "ModuleFolderCreate",
    "QueueStateResponse",
    "UploadTaskResponse",
    "EnqueueResponse",
]
