# moda/models/activity.py
from sqlalchemy import Column, String, DateTime, JSON
from datetime import datetime
import uuid
from ..database import Base

class DrawingActivity(Base):
    """Audit trail entry for drawing operations (upload, new_version, delete...)"""
    __tablename__ = "drawing_activity"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    action = Column(String(50), nullable=False)
    drawing_id = Column(String(36), nullable=True, index=True)
    project_id = Column(String(100), nullable=True, index=True)
    user_name = Column(String(255), nullable=True)

    details = Column(JSON, nullable=True)
    # Example structure:
    # {
    #   "name": "Shops - B1L2M15.pdf",
    #   "size": 2048576,
    #   "version": "2.0"
    # }

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<DrawingActivity {self.action} drawing={self.drawing_id}>"
