# moda/models/folder.py
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Enum as SQLEnum, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from ..database import Base

class FolderType(str, enum.Enum):
    """Level of a folder in the project drawing tree"""
    CATEGORY = "category"
    DISCIPLINE = "discipline"
    MODULE = "module"

class DrawingFolder(Base):
    """
    Project-scoped directory node
    category -> discipline -> module, linked through parent_id.
    Folder names mirror the remote store path segments.
    """
    __tablename__ = "drawing_folders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String(100), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("drawing_folders.id"), nullable=True)

    name = Column(String(255), nullable=False)
    folder_type = Column(SQLEnum(FolderType), nullable=False)
    color = Column(String(100), default="bg-gray-100 border-gray-400")
    sort_order = Column(Integer, default=0)
    is_default = Column(Boolean, default=False)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    parent = relationship("DrawingFolder", remote_side=[id], back_populates="children")
    children = relationship("DrawingFolder", back_populates="parent", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<DrawingFolder {self.name} type={self.folder_type}>"
