"""Exceptions raised inside the upload pipeline"""

from typing import Optional

from .upload_tasks import FailureKind, StoredFile


class UploadQueueError(Exception):
    """Base class; `kind` is copied onto the failed task"""
    kind = FailureKind.UNEXPECTED


class StoreUnavailableError(UploadQueueError):
    """The remote file store is not configured or not reachable"""
    kind = FailureKind.STORE_UNAVAILABLE


class FolderResolutionError(UploadQueueError):
    """Destination folder could not be computed or created; no bytes were sent"""
    kind = FailureKind.FOLDER_RESOLUTION


class RemoteStoreError(UploadQueueError):
    """Transport failure reported by the remote store"""
    kind = FailureKind.TRANSPORT

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MetadataReconciliationError(UploadQueueError):
    """
    The file reached the remote store but the drawing/version records
    could not be written. `remote_file` identifies the orphaned file.
    """
    kind = FailureKind.UPLOADED_NOT_RECORDED

    def __init__(self, remote_file: StoredFile, cause: BaseException):
        super().__init__(f"Uploaded to remote store but not recorded: {cause}")
        self.remote_file = remote_file
        self.cause = cause
