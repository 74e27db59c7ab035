# services/__init__.py
from .upload_queue import UploadQueueManager
from .version_reconciler import VersionReconciler
from .metadata_store import SqlMetadataStore
from .stores import RemoteFileStore, MetadataStore, create_remote_store

__all__ = [
    "UploadQueueManager",
    "VersionReconciler",
    "SqlMetadataStore",
    "RemoteFileStore",
    "MetadataStore",
    "create_remote_store",
]
