# moda/models/drawing.py
from sqlalchemy import Column, String, Integer, Text, DateTime, Enum as SQLEnum, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from ..database import Base

class StorageType(str, enum.Enum):
    """Backend holding the binary file of a version"""
    SHAREPOINT = "sharepoint"
    LOCAL = "local"

class Drawing(Base):
    """
    A logical document (floor plan, shop drawing, module package...)
    that accumulates versions over time
    """
    __tablename__ = "drawings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String(100), nullable=False, index=True)
    discipline = Column(String(255), nullable=False, index=True)  # discipline folder id or name
    name = Column(String(255), nullable=False)
    description = Column(Text, default="")
    created_by = Column(String(255), default="Unknown")
    # Highest label ever issued; deleting versions does not lower it
    last_version = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    versions = relationship(
        "DrawingVersion",
        back_populates="drawing",
        cascade="all, delete-orphan",
        order_by="DrawingVersion.uploaded_at",
    )

    def __repr__(self):
        return f"<Drawing {self.name} project={self.project_id} discipline={self.discipline}>"

class DrawingVersion(Base):
    """
    One uploaded revision of a drawing
    Version labels are "1.0", "2.0"... and never reused
    """
    __tablename__ = "drawing_versions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    drawing_id = Column(String(36), ForeignKey("drawings.id"), nullable=False, index=True)

    version = Column(String(20), nullable=False, default="1.0")
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)  # Bytes
    mime_type = Column(String(100), default="application/pdf")

    # Pointer into the remote file store
    storage_type = Column(SQLEnum(StorageType), nullable=False, default=StorageType.SHAREPOINT)
    storage_path = Column(String(1000), nullable=True)  # e.g. "sharepoint:<webUrl>"
    folder_path = Column(String(1000), nullable=True, index=True)  # remote folder holding file_name
    remote_file_id = Column(String(255), nullable=True)
    web_url = Column(String(1000), nullable=True)
    download_url = Column(String(2000), nullable=True)

    uploaded_by = Column(String(255), default="Unknown")
    uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, default="")

    drawing = relationship("Drawing", back_populates="versions")

    def __repr__(self):
        return f"<DrawingVersion {self.file_name} v{self.version}>"
