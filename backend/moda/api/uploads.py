# moda/api/uploads.py
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import os
from ..database import get_db
from ..config import settings
from ..models.folder import DrawingFolder, FolderType
from ..schemas.upload import EnqueueResponse, QueueStateResponse, UploadTaskResponse
from ..services.folder_paths import folder_names_from_ancestry
from ..services.upload_queue import UploadQueueManager
from ..services.upload_tasks import UploadOptions
from ..utils.file_handlers import validate_file_type, stage_upload_file
from .dependencies import get_upload_queue

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/projects/{project_id}/uploads",
             response_model=EnqueueResponse,
             status_code=202,
             summary="Queue Drawing Uploads",
             description="""
             Queue one or more drawing files for background upload.

             Files are staged on the server and uploaded to the document library
             one at a time, in the order they were queued. The response returns
             immediately with one task id per file; follow progress through
             `GET /api/uploads` or the `/ws/uploads` WebSocket.

             **Destination**: either pass `folder_id` (a discipline or module folder
             of the project) or `category_name` + `discipline_name`.

             **Versioning**: a file whose name matches an existing drawing in the
             same discipline becomes that drawing's next version (1.0 -> 2.0).

             **Module Packages**: pass `serial_number` (and optionally `hitch_blm` /
             `rear_blm`) to upload into the module's package folder; without them
             the module id is guessed from the file name.

             **File name**: `versioned_file_name` overrides the stored name of a
             single uploaded file. Names already used in the destination folder
             get a `_v{N}` suffix instead of being overwritten.
             """,
             responses={
                 400: {"description": "Invalid file type or destination"},
                 404: {"description": "Folder not found"},
                 413: {"description": "File size exceeds limit"},
             })
async def queue_uploads(
    project_id: str,
    files: List[UploadFile] = File(..., description="Drawing files"),
    project_name: str = Form(...),
    created_by: str = Form("Unknown"),
    folder_id: Optional[str] = Form(None),
    category_name: Optional[str] = Form(None),
    discipline_name: Optional[str] = Form(None),
    discipline_id: Optional[str] = Form(None),
    module_folder_name: Optional[str] = Form(None),
    versioned_file_name: Optional[str] = Form(None),
    serial_number: Optional[str] = Form(None),
    hitch_blm: Optional[str] = Form(None),
    rear_blm: Optional[str] = Form(None),
    notes: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    queue: UploadQueueManager = Depends(get_upload_queue),
):
    """Stage files and add them to the upload queue"""
    if folder_id:
        folders = db.query(DrawingFolder).filter(DrawingFolder.project_id == project_id).all()
        folders_by_id = {f.id: f for f in folders}
        if folder_id not in folders_by_id:
            raise HTTPException(status_code=404, detail=f"Folder {folder_id} not found in project {project_id}")
        try:
            category_name, discipline_name, module_folder_name = folder_names_from_ancestry(folder_id, folders_by_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        discipline_folder = next(
            f for f in _ancestry(folders_by_id, folder_id) if f.folder_type == FolderType.DISCIPLINE
        )
        discipline_id = discipline_id or discipline_folder.id

    if not category_name or not discipline_name:
        raise HTTPException(status_code=400, detail="Either folder_id or category_name and discipline_name are required")

    if versioned_file_name:
        if len(files) > 1:
            raise HTTPException(status_code=400, detail="versioned_file_name needs exactly one file")
        if os.path.basename(versioned_file_name) != versioned_file_name or not validate_file_type(versioned_file_name):
            raise HTTPException(status_code=400, detail=f"Invalid versioned_file_name '{versioned_file_name}'")

    for file in files:
        if not validate_file_type(file.filename or ""):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid file type for '{file.filename}'. Allowed: {settings.ALLOWED_EXTENSIONS}"
            )
        if file.size and file.size > settings.MAX_UPLOAD_SIZE:
            max_mb = settings.MAX_UPLOAD_SIZE / (1024 * 1024)
            raise HTTPException(
                status_code=413,
                detail=f"File '{file.filename}' too large. Max size: {max_mb:.1f} MB"
            )

    file_refs = [stage_upload_file(file) for file in files]

    options = UploadOptions(
        project_id=project_id,
        project_name=project_name,
        category_name=category_name,
        discipline_name=discipline_name,
        discipline_id=discipline_id,
        created_by=created_by,
        module_folder_name=module_folder_name,
        versioned_file_name=versioned_file_name or None,
        serial_number=serial_number,
        hitch_blm=hitch_blm,
        rear_blm=rear_blm,
        notes=notes,
    )
    task_ids = queue.enqueue(file_refs, options)
    return EnqueueResponse(task_ids=task_ids, pending_count=queue.get_state().pending_count)

def _ancestry(folders_by_id, folder_id):
    current = folders_by_id.get(folder_id)
    while current is not None:
        yield current
        current = folders_by_id.get(current.parent_id) if current.parent_id else None

@router.get("/uploads", response_model=QueueStateResponse)
async def get_queue_state(queue: UploadQueueManager = Depends(get_upload_queue)):
    """
    Current upload queue snapshot
    """
    return QueueStateResponse.model_validate(queue.get_state())

@router.get("/uploads/{task_id}", response_model=UploadTaskResponse)
async def get_upload(task_id: str, queue: UploadQueueManager = Depends(get_upload_queue)):
    task = queue.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Upload {task_id} not found")
    return UploadTaskResponse.model_validate(task)

@router.delete("/uploads/{task_id}",
               status_code=204,
               summary="Cancel Queued Upload",
               description="""
               Remove an upload that has not started yet.

               Uploads already in progress always run to completion so the
               document library is never left with a half-written file.
               """,
               responses={
                   204: {"description": "Upload cancelled"},
                   404: {"description": "Upload not found"},
                   409: {"description": "Upload already started or finished"}
               })
async def cancel_upload(task_id: str, queue: UploadQueueManager = Depends(get_upload_queue)):
    """Cancel a queued upload"""
    task = queue.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Upload {task_id} not found")
    if not queue.cancel(task_id):
        raise HTTPException(status_code=409, detail=f"Upload {task_id} is {task.status.value} and cannot be cancelled")
    return

@router.delete("/uploads", response_model=QueueStateResponse)
async def cancel_pending_uploads(queue: UploadQueueManager = Depends(get_upload_queue)):
    """
    Cancel every queued upload; the current upload finishes
    """
    queue.cancel_all_pending()
    return QueueStateResponse.model_validate(queue.get_state())

@router.post("/uploads/history/clear", response_model=QueueStateResponse)
async def clear_upload_history(queue: UploadQueueManager = Depends(get_upload_queue)):
    """Reset completed/failed counters"""
    queue.clear_history()
    return QueueStateResponse.model_validate(queue.get_state())
