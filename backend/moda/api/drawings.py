# moda/api/drawings.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, selectinload
from typing import List, Optional
from datetime import datetime
import logging
from ..database import get_db
from ..models.activity import DrawingActivity
from ..models.drawing import Drawing, DrawingVersion
from ..schemas.drawing import DrawingResponse, DrawingUpdate, VersionResponse, UrlResponse
from ..services.errors import RemoteStoreError
from ..services.stores import RemoteFileStore
from ..services.version_reconciler import latest_version
from ..utils.formatting import format_date, format_file_size
from .dependencies import get_remote_store

logger = logging.getLogger(__name__)

router = APIRouter()

def _get_drawing(db: Session, drawing_id: str) -> Drawing:
    drawing = (
        db.query(Drawing)
        .options(selectinload(Drawing.versions))
        .filter(Drawing.id == drawing_id)
        .first()
    )
    if not drawing:
        raise HTTPException(status_code=404, detail=f"Drawing {drawing_id} not found")
    return drawing

def _get_version(db: Session, drawing_id: str, version_id: str) -> DrawingVersion:
    version = db.query(DrawingVersion).filter(
        DrawingVersion.id == version_id,
        DrawingVersion.drawing_id == drawing_id
    ).first()
    if not version:
        raise HTTPException(status_code=404, detail=f"Version {version_id} not found for drawing {drawing_id}")
    return version

async def _delete_remote_file(remote_store: RemoteFileStore, version: DrawingVersion):
    """Best effort: the metadata row goes even if the remote delete fails"""
    if not version.remote_file_id:
        return
    try:
        await remote_store.delete_file(version.remote_file_id)
    except RemoteStoreError as e:
        logger.warning(f"[Drawings] Could not delete remote file {version.remote_file_id}: {e}")

def _log(db: Session, action: str, drawing: Drawing, user_name: Optional[str], details: dict):
    db.add(DrawingActivity(
        action=action,
        drawing_id=drawing.id,
        project_id=drawing.project_id,
        user_name=user_name,
        details=details,
    ))

@router.get("/projects/{project_id}/drawings", response_model=List[DrawingResponse])
def list_drawings(
    project_id: str,
    discipline: Optional[str] = Query(None, description="Discipline folder id or name"),
    db: Session = Depends(get_db)
):
    """
    List drawings of a project (newest first), optionally for one discipline
    """
    query = db.query(Drawing).options(selectinload(Drawing.versions)).filter(Drawing.project_id == project_id)
    if discipline:
        query = query.filter(Drawing.discipline == discipline)
    return query.order_by(Drawing.created_at.desc()).all()

@router.get("/projects/{project_id}/drawings/counts")
def drawing_counts(project_id: str, db: Session = Depends(get_db)):
    """Number of drawings per discipline"""
    counts = {}
    for (discipline,) in db.query(Drawing.discipline).filter(Drawing.project_id == project_id):
        counts[discipline] = counts.get(discipline, 0) + 1
    return [{"discipline": d, "count": c} for d, c in sorted(counts.items())]

@router.get("/projects/{project_id}/activity")
def list_activity(
    project_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """
    Recent drawing activity for a project
    """
    entries = (
        db.query(DrawingActivity)
        .filter(DrawingActivity.project_id == project_id)
        .order_by(DrawingActivity.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": e.id,
            "action": e.action,
            "drawing_id": e.drawing_id,
            "user_name": e.user_name,
            "details": e.details or {},
            "size": format_file_size((e.details or {}).get("size")),
            "created_at": e.created_at,
            "display_time": format_date(e.created_at),
        }
        for e in entries
    ]

@router.get("/drawings/{drawing_id}", response_model=DrawingResponse)
def get_drawing(drawing_id: str, db: Session = Depends(get_db)):
    """Get a drawing with its version history"""
    return _get_drawing(db, drawing_id)

@router.patch("/drawings/{drawing_id}", response_model=DrawingResponse)
def update_drawing(drawing_id: str, updates: DrawingUpdate, db: Session = Depends(get_db)):
    drawing = _get_drawing(db, drawing_id)
    if updates.name is not None:
        drawing.name = updates.name
    if updates.description is not None:
        drawing.description = updates.description
    drawing.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(drawing)
    return drawing

@router.get("/drawings/{drawing_id}/versions", response_model=List[VersionResponse])
def list_versions(drawing_id: str, db: Session = Depends(get_db)):
    """
    Versions of a drawing, newest upload first
    """
    drawing = _get_drawing(db, drawing_id)
    return sorted(drawing.versions, key=lambda v: v.uploaded_at, reverse=True)

@router.get("/drawings/{drawing_id}/versions/latest", response_model=VersionResponse)
def get_latest_version(drawing_id: str, db: Session = Depends(get_db)):
    drawing = _get_drawing(db, drawing_id)
    latest = latest_version(VersionResponse.model_validate(v) for v in drawing.versions)
    if latest is None:
        raise HTTPException(status_code=404, detail=f"Drawing {drawing_id} has no versions")
    return latest

@router.get("/drawings/{drawing_id}/versions/{version_id}/download", response_model=UrlResponse)
async def get_download_url(
    drawing_id: str,
    version_id: str,
    db: Session = Depends(get_db),
    remote_store: RemoteFileStore = Depends(get_remote_store)
):
    """
    Fresh download URL for a version (stored URLs expire)
    """
    version = _get_version(db, drawing_id, version_id)
    if not version.remote_file_id:
        raise HTTPException(status_code=404, detail="Version has no remote file")
    try:
        return UrlResponse(url=await remote_store.get_download_url(version.remote_file_id))
    except RemoteStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))

@router.get("/drawings/{drawing_id}/versions/{version_id}/preview", response_model=UrlResponse)
async def get_preview_url(
    drawing_id: str,
    version_id: str,
    db: Session = Depends(get_db),
    remote_store: RemoteFileStore = Depends(get_remote_store)
):
    version = _get_version(db, drawing_id, version_id)
    if not version.remote_file_id:
        raise HTTPException(status_code=404, detail="Version has no remote file")
    try:
        return UrlResponse(url=await remote_store.get_preview_url(version.remote_file_id))
    except RemoteStoreError as e:
        raise HTTPException(status_code=502, detail=str(e))

@router.delete("/drawings/{drawing_id}/versions/{version_id}",
               status_code=204,
               summary="Delete Drawing Version",
               description="""
               Delete one version and its remote file.

               Version labels are never issued twice: after deleting 2.0 of
               [1.0, 2.0] the next upload of the drawing is 3.0.
               """)
async def delete_version(
    drawing_id: str,
    version_id: str,
    user_name: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    remote_store: RemoteFileStore = Depends(get_remote_store)
):
    """Delete a specific version"""
    drawing = _get_drawing(db, drawing_id)
    version = _get_version(db, drawing_id, version_id)

    await _delete_remote_file(remote_store, version)

    _log(db, "delete_version", drawing, user_name, {"version": version.version, "file_name": version.file_name})
    db.delete(version)
    db.commit()
    return

@router.delete("/drawings/{drawing_id}", status_code=204)
async def delete_drawing(
    drawing_id: str,
    user_name: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    remote_store: RemoteFileStore = Depends(get_remote_store)
):
    """
    Delete a drawing, all its versions and their remote files
    """
    drawing = _get_drawing(db, drawing_id)

    for version in drawing.versions:
        await _delete_remote_file(remote_store, version)

    _log(db, "delete", drawing, user_name, {"name": drawing.name, "versions": len(drawing.versions)})
    db.delete(drawing)
    db.commit()
    return
