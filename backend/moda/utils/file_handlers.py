# moda/utils/file_handlers.py
import os
import shutil
import uuid
from pathlib import Path
from fastapi import UploadFile
from ..config import settings
from ..services.upload_tasks import FileRef

def validate_file_type(filename: str) -> bool:
    """
    Validate that the file extension is one the drawing library accepts
    """
    extension = Path(filename).suffix.lower()
    return extension in settings.ALLOWED_EXTENSIONS

def stage_upload_file(upload_file: UploadFile) -> FileRef:
    """
    Copy an incoming upload to the staging area so the request can return
    while the queue works through it. The returned FileRef removes the
    staged copy when released.

    File structure:
    uploads/
      staging/
        {uuid}/
          {filename}
    """
    staging_dir = os.path.join(settings.UPLOAD_DIR, "staging", uuid.uuid4().hex)
    os.makedirs(staging_dir, exist_ok=True)

    # Never trust client-supplied directory parts
    filename = os.path.basename(upload_file.filename or "upload.bin")
    storage_path = os.path.join(staging_dir, filename)

    with open(storage_path, "wb") as f:
        shutil.copyfileobj(upload_file.file, f)

    return FileRef(
        name=filename,
        size=os.path.getsize(storage_path),
        mime_type=upload_file.content_type or "application/octet-stream",
        path=storage_path,
        temporary=True,
    )

def clear_staging_area():
    """
    Delete leftover staged files (the queue is not durable across restarts)
    """
    staging_dir = os.path.join(settings.UPLOAD_DIR, "staging")
    if os.path.exists(staging_dir):
        shutil.rmtree(staging_dir)
