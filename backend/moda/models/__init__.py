# moda/models/__init__.py
from .drawing import Drawing, DrawingVersion, StorageType
from .folder import DrawingFolder, FolderType
from .activity import DrawingActivity

__all__ = [
    "Drawing",
    "DrawingVersion",
    "StorageType",
    "DrawingFolder",
    "FolderType",
    "DrawingActivity",
]
