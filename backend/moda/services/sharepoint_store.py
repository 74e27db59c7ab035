"""
SharePoint File Store

Talks to a SharePoint document library through Microsoft Graph:
- App-only token via the client credentials flow
- Folder creation level by level (409 = already there)
- Simple PUT for small files, chunked upload session for large ones
- Delete, download URL and preview URL lookups
"""

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..models.drawing import StorageType
from .errors import RemoteStoreError
from .stores import ProgressCallback, UploadTarget
from .upload_tasks import FileRef, StoredFile, UploadPhase, UploadProgress

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
LOGIN_URL = "https://login.microsoftonline.com"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


def _encode_path(path: str) -> str:
    return quote(path.strip("/"), safe="/")


class SharePointFileStore:
    """RemoteFileStore backed by a SharePoint site drive"""

    storage_type = StorageType.SHAREPOINT

    def __init__(
        self,
        tenant_id: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        site_id: Optional[str],
        timeout: float = 120.0,
        simple_upload_limit: int = 4 * 1024 * 1024,
        chunk_size: int = 10 * 1024 * 1024,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.site_id = site_id
        self.simple_upload_limit = simple_upload_limit
        self.chunk_size = chunk_size

        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = client is None
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @classmethod
    def from_settings(cls, settings) -> "SharePointFileStore":
        return cls(
            tenant_id=settings.SHAREPOINT_TENANT_ID,
            client_id=settings.SHAREPOINT_CLIENT_ID,
            client_secret=settings.SHAREPOINT_CLIENT_SECRET,
            site_id=settings.SHAREPOINT_SITE_ID,
            timeout=settings.SHAREPOINT_TIMEOUT,
            simple_upload_limit=settings.SHAREPOINT_SIMPLE_UPLOAD_LIMIT,
            chunk_size=settings.SHAREPOINT_CHUNK_SIZE,
        )

    def is_available(self) -> bool:
        return all([self.tenant_id, self.client_id, self.client_secret, self.site_id])

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    @property
    def _drive_url(self) -> str:
        return f"{GRAPH_URL}/sites/{self.site_id}/drive"

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _get_access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        response = await self._send(
            "POST",
            f"{LOGIN_URL}/{self.tenant_id}/oauth2/v2.0/token",
            authorized=False,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": GRAPH_SCOPE,
                "grant_type": "client_credentials",
            },
        )
        if response.status_code != 200:
            raise RemoteStoreError(f"Failed to get access token: {response.text}", response.status_code)

        data = response.json()
        self._token = data["access_token"]
        # Refresh a minute early
        self._token_expires_at = time.monotonic() + max(int(data.get("expires_in", 3600)) - 60, 0)
        return self._token

    async def _send(self, method: str, url: str, authorized: bool = True, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if authorized:
            headers["Authorization"] = f"Bearer {await self._get_access_token()}"
        try:
            return await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"[SharePoint] {method} {url} failed: {e}")
            raise RemoteStoreError(f"SharePoint request failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str):
        if response.is_success:
            return
        logger.error(f"[SharePoint] {action} failed ({response.status_code}): {response.text[:200]}")
        raise RemoteStoreError(f"Failed to {action}: {response.text}", response.status_code)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(self, parent_path: str, folder_name: str) -> Dict[str, Any]:
        if parent_path:
            url = f"{self._drive_url}/root:/{_encode_path(parent_path)}:/children"
        else:
            url = f"{self._drive_url}/root/children"

        response = await self._send("POST", url, json={
            "name": folder_name,
            "folder": {},
            "@microsoft.graph.conflictBehavior": "fail",
        })
        if response.status_code == 409:
            return {"exists": True}
        self._raise_for_status(response, f"create folder '{folder_name}'")
        return response.json()

    async def ensure_folder(self, folder_path: str) -> None:
        parent = ""
        for segment in [s for s in folder_path.split("/") if s]:
            await self.create_folder(parent, segment)
            parent = f"{parent}/{segment}" if parent else segment
        logger.debug(f"[SharePoint] Folder ready: {folder_path}")

    async def list_files(self, folder_path: str) -> list:
        response = await self._send("GET", f"{self._drive_url}/root:/{_encode_path(folder_path)}:/children")
        if response.status_code == 404:
            return []  # folder doesn't exist yet
        self._raise_for_status(response, "list files")
        return response.json().get("value", [])

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        file: FileRef,
        target: UploadTarget,
        on_progress: Optional[ProgressCallback] = None,
    ) -> StoredFile:
        def report(phase: UploadPhase, percent: int, uploaded: int = 0, speed: float = 0.0):
            if on_progress:
                on_progress(UploadProgress(
                    percent=percent,
                    phase=phase,
                    bytes_uploaded=uploaded,
                    total_bytes=file.size,
                    speed_bytes_per_sec=speed,
                ))

        item_path = _encode_path(f"{target.folder_path}/{target.file_name}")
        report(UploadPhase.PREPARING, 0)

        if file.size <= self.simple_upload_limit:
            response = await self._send(
                "PUT",
                f"{self._drive_url}/root:/{item_path}:/content",
                headers={"Content-Type": "application/octet-stream"},
                content=await file.aread_bytes(),
            )
            self._raise_for_status(response, "upload file")
            item = response.json()
        else:
            item = await self._upload_large_file(file, item_path, report)

        report(UploadPhase.COMPLETE, 100, file.size)
        logger.info(f"[SharePoint] Uploaded {target.folder_path}/{target.file_name} ({file.size} bytes)")
        return StoredFile(
            id=item["id"],
            web_url=item.get("webUrl"),
            download_url=item.get("@microsoft.graph.downloadUrl"),
        )

    async def _upload_large_file(self, file: FileRef, item_path: str, report) -> Dict[str, Any]:
        report(UploadPhase.CREATING_SESSION, 0)
        response = await self._send(
            "POST",
            f"{self._drive_url}/root:/{item_path}:/createUploadSession",
            json={"item": {"@microsoft.graph.conflictBehavior": "replace"}},
        )
        self._raise_for_status(response, "create upload session")
        upload_url = response.json()["uploadUrl"]

        started = time.monotonic()
        offset = 0
        item: Dict[str, Any] = {}
        async for chunk in file.aiter_chunks(self.chunk_size):
            end = offset + len(chunk)
            # The session URL is pre-authenticated; no bearer token
            response = await self._send(
                "PUT",
                upload_url,
                authorized=False,
                headers={
                    "Content-Length": str(len(chunk)),
                    "Content-Range": f"bytes {offset}-{end - 1}/{file.size}",
                },
                content=chunk,
            )
            self._raise_for_status(response, "upload chunk")
            item = response.json()
            offset = end

            elapsed = max(time.monotonic() - started, 1e-6)
            # 100 is reserved for the final "complete" report
            report(UploadPhase.UPLOADING, min(int(offset * 100 / file.size), 99), offset, offset / elapsed)

        if "id" not in item:
            raise RemoteStoreError("Upload session ended without returning the file item")
        return item

    async def delete_file(self, file_id: str) -> None:
        response = await self._send("DELETE", f"{self._drive_url}/items/{file_id}")
        if response.status_code == 404:
            logger.warning(f"[SharePoint] Delete: file {file_id} already gone")
            return
        self._raise_for_status(response, "delete file")

    async def get_download_url(self, file_id: str) -> str:
        response = await self._send("GET", f"{self._drive_url}/items/{file_id}")
        self._raise_for_status(response, "get file info")
        return response.json()["@microsoft.graph.downloadUrl"]

    async def get_preview_url(self, file_id: str) -> str:
        response = await self._send("POST", f"{self._drive_url}/items/{file_id}/preview", json={})
        self._raise_for_status(response, "get preview url")
        return response.json()["getUrl"]
