"""
Local directory file store

Development stand-in for SharePoint: files land under
{UPLOAD_DIR}/store/{folder path}/{file name}. The file id is the path
relative to the store root.
"""

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional

from ..models.drawing import StorageType
from .errors import RemoteStoreError
from .stores import ProgressCallback, UploadTarget
from .upload_tasks import FileRef, StoredFile, UploadPhase, UploadProgress

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalFileStore:
    storage_type = StorageType.LOCAL

    def __init__(self, base_dir: str):
        self.root = Path(base_dir) / "store"

    def is_available(self) -> bool:
        return True

    def _resolve(self, relative: str) -> Path:
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents and path != self.root.resolve():
            raise RemoteStoreError(f"Path escapes the store root: {relative}")
        return path

    async def ensure_folder(self, folder_path: str) -> None:
        os.makedirs(self._resolve(folder_path), exist_ok=True)

    async def upload_file(
        self,
        file: FileRef,
        target: UploadTarget,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StoredFile:
        relative = f"{target.folder_path}/{target.file_name}"
        destination = self._resolve(relative)
        os.makedirs(destination.parent, exist_ok=True)

        started = time.monotonic()
        written = 0
        try:
            with open(destination, "wb") as f:
                async for chunk in file.aiter_chunks(CHUNK_SIZE):
                    await asyncio.to_thread(f.write, chunk)
                    written += len(chunk)
                    if on_progress:
                        elapsed = max(time.monotonic() - started, 1e-6)
                        on_progress(UploadProgress(
                            percent=int(written * 100 / file.size) if file.size else 100,
                            phase=UploadPhase.UPLOADING,
                            bytes_uploaded=written,
                            total_bytes=file.size,
                            speed_bytes_per_sec=written / elapsed,
                        ))
                    await asyncio.sleep(0)
        except OSError as e:
            raise RemoteStoreError(f"Failed to write {relative}: {e}") from e

        logger.info(f"[LocalStore] Stored {relative} ({written} bytes)")
        return StoredFile(id=relative, web_url=destination.as_uri(), download_url=destination.as_uri())

    async def delete_file(self, file_id: str) -> None:
        path = self._resolve(file_id)
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            os.remove(path)

    async def get_download_url(self, file_id: str) -> str:
        path = self._resolve(file_id)
        if not path.exists():
            raise RemoteStoreError(f"File not found: {file_id}", status_code=404)
        return path.as_uri()

    async def get_preview_url(self, file_id: str) -> str:
        return await self.get_download_url(file_id)
