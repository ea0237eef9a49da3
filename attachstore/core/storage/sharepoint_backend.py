"""SharePoint document library storage backend (Microsoft Graph)."""

from __future__ import annotations

import posixpath
import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

from attachstore.config.settings import SharePointSettings
from attachstore.logging.setup import get_logger

from .backend import StorageBackend, StorageCapability, StorageResult, UploadMetadata
from .errors import StorageError, StorageErrorType
from .graph_client import GraphAPIError, GraphClient
from .validator import generate_unique_filename, sanitize_storage_path

logger = get_logger(__name__)

# Characters SharePoint rejects in item names, plus path separators
_INVALID_SEGMENT_CHARS = re.compile(r'[\\/:*?"<>|#%\x00-\x1f]')


def _folder_segment(value: object) -> str:
    """Render a value (e.g. an invoice id) as one folder name."""
    return _INVALID_SEGMENT_CHARS.sub("-", str(value)).strip()


def _upload_error_type(error: GraphAPIError) -> StorageErrorType:
    if error.status_code in (401, 403):
        return StorageErrorType.PERMISSION_DENIED
    if error.status_code == 507 or error.code == "quotaLimitReached":
        return StorageErrorType.DISK_FULL
    return StorageErrorType.UPLOAD_FAILED


class SharePointStorageBackend(StorageBackend):
    """
    Stores attachments in a SharePoint document library.

    Layout: {base_folder}/Invoices/{year}/{month}/{invoice_id}/{unique filename}

    Small files (up to simple_upload_max_bytes, 4 MiB by default) go up in a
    single PUT; larger ones use a Graph upload session and are sent in
    sequential chunks. Folders are created on demand.
    """

    name = "sharepoint"
    capabilities = frozenset({
        StorageCapability.MOVE,
        StorageCapability.UPLOAD_TO_PATH,
    })

    def __init__(self, settings: SharePointSettings, client: GraphClient | None = None):
        """
        Args:
            settings: SharePoint settings (site, drive, credentials, upload tuning)
            client: Graph client; built from the settings when omitted
        """
        self.settings = settings
        self.base_folder = settings.base_folder.strip("/")
        self.client = client or GraphClient(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            timeout=settings.timeout_seconds,
        )

        if settings.drive_id:
            self.drive_endpoint = f"/drives/{settings.drive_id}"
        else:
            self.drive_endpoint = f"/sites/{settings.site_id}/drive"

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def build_storage_path(
        self,
        metadata: UploadMetadata,
        filename: str,
        now: datetime | None = None,
    ) -> str:
        """Derive the drive-relative path for an upload."""
        when = metadata.invoice_date or now or datetime.now()
        parts = [
            self.base_folder,
            "Invoices",
            str(when.year),
            f"{when.month:02d}",
            _folder_segment(metadata.invoice_id),
            filename,
        ]
        return "/".join(part for part in parts if part)

    def _item_url(self, path: str, suffix: str = "") -> str:
        return f"{self.drive_endpoint}/root:/{quote(path, safe='/')}{suffix}"

    def _checked_path(self, path: str) -> str:
        self.ensure_safe_path(path)
        return sanitize_storage_path(path)

    async def _ensure_folder(self, folder_path: str) -> None:
        """Create each missing segment of folder_path, parent first."""
        current = ""
        for segment in folder_path.split("/"):
            if not segment:
                continue
            parent = current
            current = f"{parent}/{segment}" if parent else segment
            try:
                await self.client.request_json("GET", self._item_url(current))
                continue
            except GraphAPIError as e:
                if not e.is_not_found:
                    raise

            children_url = (
                f"{self._item_url(parent)}:/children" if parent
                else f"{self.drive_endpoint}/root/children"
            )
            try:
                await self.client.request_json("POST", children_url, json={
                    "name": segment,
                    "folder": {},
                    "@microsoft.graph.conflictBehavior": "fail",
                })
                logger.debug(f"Created folder {current}")
            except GraphAPIError as e:
                # Another upload created it first
                if not e.is_conflict:
                    raise

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def _simple_upload(self, path: str, data: bytes) -> dict[str, Any] | None:
        return await self.client.put_bytes(self._item_url(path, ":/content"), data)

    async def _chunked_upload(self, path: str, data: bytes) -> dict[str, Any] | None:
        session = await self.client.request_json(
            "POST",
            self._item_url(path, ":/createUploadSession"),
            json={"item": {"@microsoft.graph.conflictBehavior": "replace"}},
        )
        upload_url = (session or {}).get("uploadUrl")
        if not upload_url:
            raise GraphAPIError(None, None, "Upload session did not return an upload URL")

        total = len(data)
        chunk_size = self.settings.chunk_size
        item = None
        try:
            for start in range(0, total, chunk_size):
                chunk = data[start:start + chunk_size]
                item = await self.client.put_upload_chunk(upload_url, chunk, start, total)
        except GraphAPIError:
            try:
                await self.client.delete_url(upload_url, authenticated=False)
            except GraphAPIError as cancel_error:
                logger.warning(f"Could not cancel upload session for {path}: {cancel_error}")
            raise
        return item

    async def _upload_at(self, path: str, data: bytes) -> StorageResult:
        try:
            await self._ensure_folder(posixpath.dirname(path))
            if len(data) <= self.settings.simple_upload_max_bytes:
                item = await self._simple_upload(path, data)
            else:
                item = await self._chunked_upload(path, data)
        except GraphAPIError as e:
            logger.error(f"SharePoint upload of {path} failed: {e}")
            return StorageResult.failed(_upload_error_type(e), f"File upload failed: {e.message}")

        size = (item or {}).get("size", len(data))
        logger.info(f"Uploaded {size} bytes to SharePoint at {path}")
        return StorageResult.ok(path, size)

    async def upload(
        self,
        data: bytes,
        filename: str,
        metadata: UploadMetadata,
    ) -> StorageResult:
        unique_filename = generate_unique_filename(filename)
        try:
            path = self._checked_path(self.build_storage_path(metadata, unique_filename))
        except StorageError as e:
            logger.error(f"Refusing upload for invoice {metadata.invoice_id!r}: {e}")
            return StorageResult.failed(e.error_type, "Invalid storage path detected")
        return await self._upload_at(path, data)

    async def upload_to_path(self, data: bytes, path: str) -> StorageResult:
        try:
            path = self._checked_path(path)
        except StorageError as e:
            return StorageResult.failed(e.error_type, "Invalid storage path detected")
        return await self._upload_at(path, data)

    # ------------------------------------------------------------------
    # Download / delete / exists / move
    # ------------------------------------------------------------------

    async def download(self, path: str) -> bytes:
        path = self._checked_path(path)
        try:
            return await self.client.get_bytes(self._item_url(path, ":/content"))
        except GraphAPIError as e:
            if e.is_not_found:
                raise StorageError(
                    StorageErrorType.FILE_NOT_FOUND, f"File not found: {path}", e) from e
            raise StorageError(
                StorageErrorType.DOWNLOAD_FAILED, f"Failed to download file: {path}", e) from e

    async def delete(self, path: str) -> None:
        path = self._checked_path(path)
        try:
            await self.client.delete_url(self._item_url(path))
        except GraphAPIError as e:
            if e.is_not_found:
                return
            raise StorageError(
                StorageErrorType.DELETE_FAILED, f"Failed to delete file: {path}", e) from e
        logger.info(f"Deleted {path} from SharePoint")

    async def exists(self, path: str) -> bool:
        path = self._checked_path(path)
        try:
            await self.client.request_json("GET", self._item_url(path))
        except GraphAPIError as e:
            if e.is_not_found:
                return False
            raise StorageError(
                StorageErrorType.DOWNLOAD_FAILED,
                f"Could not check whether {path} exists: {e.message}", e) from e
        return True

    async def move(self, source_path: str, destination_path: str) -> None:
        source_path = self._checked_path(source_path)
        destination_path = self._checked_path(destination_path)
        folder, name = posixpath.split(destination_path)
        try:
            await self._ensure_folder(folder)
            await self.client.request_json("PATCH", self._item_url(source_path), json={
                "parentReference": {"path": f"/drive/root:/{folder}" if folder else "/drive/root:"},
                "name": name,
            })
        except GraphAPIError as e:
            if e.is_not_found:
                raise StorageError(
                    StorageErrorType.FILE_NOT_FOUND, f"File not found: {source_path}", e) from e
            raise StorageError(
                StorageErrorType.MOVE_FAILED,
                f"Failed to move {source_path} to {destination_path}",
                e,
            ) from e
        logger.info(f"Moved {source_path} to {destination_path}")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def test_connection(self) -> dict[str, Any]:
        """Fetch the drive resource to verify credentials and site/drive IDs."""
        try:
            drive = await self.client.request_json("GET", self.drive_endpoint) or {}
        except GraphAPIError as e:
            logger.error(f"SharePoint connection test failed: {e}")
            return {"success": False, "backend": self.name, "error": str(e)}
        return {
            "success": True,
            "backend": self.name,
            "drive_id": drive.get("id"),
            "drive_name": drive.get("name"),
            "web_url": drive.get("webUrl"),
        }

    async def aclose(self) -> None:
        await self.client.aclose()
