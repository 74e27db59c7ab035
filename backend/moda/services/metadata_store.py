"""
SQL Metadata Store

MetadataStore implementation on the service database. Each call runs in
its own unit of work and returns detached pydantic schemas, so the upload
worker never holds ORM objects across awaits.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import selectinload, sessionmaker

from ..database import SessionLocal, session_scope
from ..models.activity import DrawingActivity
from ..models.drawing import Drawing, DrawingVersion, StorageType
from ..schemas.drawing import DrawingResponse, VersionResponse
from .folder_paths import parse_version_number
from .stores import storage_path_for
from .upload_tasks import StoredFile

logger = logging.getLogger(__name__)


class SqlMetadataStore:

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    async def find_drawing(self, project_id: str, discipline: str, name: str) -> Optional[DrawingResponse]:
        with session_scope(self._session_factory) as db:
            drawing = (
                db.query(Drawing)
                .options(selectinload(Drawing.versions))
                .filter(
                    Drawing.project_id == project_id,
                    Drawing.discipline == discipline,
                    func.lower(Drawing.name) == name.lower(),
                )
                .order_by(Drawing.created_at.asc())
                .first()
            )
            return DrawingResponse.model_validate(drawing) if drawing else None

    async def create_drawing(
        self,
        project_id: str,
        discipline: str,
        name: str,
        created_by: str,
        description: str = "",
    ) -> DrawingResponse:
        with session_scope(self._session_factory) as db:
            drawing = Drawing(
                project_id=project_id,
                discipline=discipline,
                name=name,
                description=description or "",
                created_by=created_by or "Unknown",
            )
            db.add(drawing)
            db.flush()
            db.refresh(drawing)
            result = DrawingResponse.model_validate(drawing)
        logger.info(f"[Drawings] Created drawing {result.id} '{name}'")
        return result

    async def create_version(
        self,
        drawing_id: str,
        version: str,
        file_name: str,
        file_size: int,
        mime_type: Optional[str],
        storage_type: StorageType,
        stored_file: StoredFile,
        uploaded_by: str,
        notes: Optional[str] = None,
        folder_path: Optional[str] = None,
    ) -> VersionResponse:
        with session_scope(self._session_factory) as db:
            drawing = db.query(Drawing).filter(Drawing.id == drawing_id).first()
            if drawing is None:
                raise LookupError(f"Drawing {drawing_id} not found")

            record = DrawingVersion(
                drawing_id=drawing_id,
                version=version,
                file_name=file_name,
                file_size=file_size,
                mime_type=mime_type or "application/pdf",
                storage_type=storage_type,
                storage_path=storage_path_for(storage_type, stored_file),
                folder_path=folder_path,
                remote_file_id=stored_file.id,
                web_url=stored_file.web_url,
                download_url=stored_file.download_url,
                uploaded_by=uploaded_by or "Unknown",
                notes=notes or "",
            )
            db.add(record)
            if parse_version_number(version) > parse_version_number(drawing.last_version):
                drawing.last_version = version
            drawing.updated_at = datetime.utcnow()
            db.flush()
            db.refresh(record)
            result = VersionResponse.model_validate(record)
        logger.info(f"[Drawings] Created version {result.version} of drawing {drawing_id}")
        return result

    async def file_names_in_folder(self, folder_path: str) -> Set[str]:
        with session_scope(self._session_factory) as db:
            rows = (
                db.query(DrawingVersion.file_name)
                .filter(func.lower(DrawingVersion.folder_path) == folder_path.lower())
                .all()
            )
            return {file_name for (file_name,) in rows}

    async def log_activity(
        self,
        action: str,
        drawing_id: Optional[str],
        project_id: Optional[str],
        user_name: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        with session_scope(self._session_factory) as db:
            db.add(DrawingActivity(
                action=action,
                drawing_id=drawing_id,
                project_id=project_id,
                user_name=user_name,
                details=details or {},
                created_at=timestamp or datetime.utcnow(),
            ))
