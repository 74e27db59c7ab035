# moda/api/dependencies.py
from fastapi import HTTPException, Request
from ..services.upload_queue import UploadQueueManager
from ..services.stores import RemoteFileStore

def get_upload_queue(request: Request) -> UploadQueueManager:
    """Queue instance created at startup (see main.py)"""
    queue = getattr(request.app.state, "upload_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Upload queue is not running")
    return queue

def get_remote_store(request: Request) -> RemoteFileStore:
    store = getattr(request.app.state, "remote_store", None)
    if store is None or not store.is_available():
        raise HTTPException(status_code=503, detail="Remote file store is not configured")
    return store
