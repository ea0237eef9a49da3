"""Local filesystem storage backend."""

from __future__ import annotations

import asyncio
import errno
import os
import re
import secrets
from datetime import date, datetime
from pathlib import Path
from typing import Any

from attachstore.logging.setup import get_logger

from .backend import StorageBackend, StorageCapability, StorageResult, UploadMetadata
from .errors import StorageError, StorageErrorType
from .validator import generate_unique_filename, sanitize_storage_path

logger = get_logger(__name__)

MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

_INVALID_FOLDER_CHARS = re.compile(r'[/\\:*?"<>|]')
_WHITESPACE_RUNS = re.compile(r"\s+")

FILE_MODE = 0o644
DIR_MODE = 0o755


def sanitize_folder_name(name: str) -> str:
    """Make a recurring-profile name usable as a single directory name."""
    cleaned = _INVALID_FOLDER_CHARS.sub("-", name)
    cleaned = _WHITESPACE_RUNS.sub(" ", cleaned).strip()[:100].strip()
    if cleaned in ("", ".", ".."):
        return "profile"
    return cleaned


def _error_type_for(exc: OSError, fallback: StorageErrorType) -> StorageErrorType:
    if exc.errno == errno.ENOSPC:
        return StorageErrorType.DISK_FULL
    if isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM):
        return StorageErrorType.PERMISSION_DENIED
    if isinstance(exc, FileNotFoundError):
        return StorageErrorType.FILE_NOT_FOUND
    return fallback


class LocalStorageBackend(StorageBackend):
    """
    Local filesystem storage backend.

    Directory layout under the base directory:
    - Recurring: invoices/{year}/Recurring/{profile}/{unique filename}
    - One-time:  invoices/{year}/one-time/{Mon}/{unique filename}

    Example: invoices/2025/one-time/Dec/1733011200000_9f2c4a1b_receipt.pdf

    Security features:
    - Unique, sanitized filenames
    - Every resolved path must stay inside the base directory
    - Atomic writes (temp file + rename), so readers never see partial files
    """

    name = "local"
    capabilities = frozenset({
        StorageCapability.MOVE,
        StorageCapability.UPLOAD_TO_PATH,
    })

    def __init__(self, base_dir: str | os.PathLike = "./uploads"):
        """
        Args:
            base_dir: Base directory for stored files (created lazily)
        """
        self.base_dir = Path(os.path.abspath(base_dir))

    # ------------------------------------------------------------------
    # Path handling
    # ------------------------------------------------------------------

    def build_storage_path(
        self,
        metadata: UploadMetadata,
        filename: str,
        now: datetime | None = None,
    ) -> str:
        """
        Derive the relative storage path for an upload.

        Year and month come from the invoice date when given, else today.
        """
        when: date = metadata.invoice_date or now or datetime.now()
        year = str(when.year)

        if metadata.is_recurring and metadata.profile_name:
            profile = sanitize_folder_name(metadata.profile_name)
            parts = ("invoices", year, "Recurring", profile, filename)
        else:
            month = MONTH_ABBREVIATIONS[when.month - 1]
            parts = ("invoices", year, "one-time", month, filename)
        return "/".join(parts)

    def _is_within_base(self, absolute_path: str) -> bool:
        base = str(self.base_dir)
        try:
            return os.path.commonpath([base, absolute_path]) == base
        except ValueError:
            return False

    def _resolve(self, storage_path: str) -> Path:
        """
        Map a relative storage path to an absolute path inside base_dir.

        Raises:
            StorageError: INVALID_PATH if the path is unsafe or escapes base_dir
        """
        self.ensure_safe_path(storage_path)
        relative = sanitize_storage_path(storage_path)
        absolute = os.path.normpath(os.path.join(self.base_dir, relative))
        if absolute == str(self.base_dir) or not self._is_within_base(absolute):
            raise StorageError(
                StorageErrorType.INVALID_PATH,
                "Path traversal attempt detected",
            )
        return Path(absolute)

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)
    # ------------------------------------------------------------------

    def _write_atomic(self, target: Path, data: bytes) -> int:
        target.parent.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        temp_path = target.with_name(f"{target.name}.tmp.{secrets.token_hex(4)}")
        try:
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, target)
        except BaseException:
            try:
                temp_path.unlink()
            except OSError:
                pass
            raise
        return target.stat().st_size

    def _prune_empty_dirs(self, directory: Path) -> None:
        """Remove empty directories upward, stopping at base_dir."""
        try:
            current = directory
            while current != self.base_dir and self._is_within_base(str(current)):
                if any(current.iterdir()):
                    break
                current.rmdir()
                current = current.parent
        except OSError:
            logger.debug(f"Stopped pruning directories at {directory}")

    def _remove(self, target: Path) -> None:
        try:
            target.unlink()
        except FileNotFoundError:
            return
        self._prune_empty_dirs(target.parent)

    def _move(self, source: Path, destination: Path) -> None:
        if not source.is_file():
            raise FileNotFoundError(errno.ENOENT, "Source file not found", str(source))
        destination.parent.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        os.replace(source, destination)
        self._prune_empty_dirs(source.parent)

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def upload(
        self,
        data: bytes,
        filename: str,
        metadata: UploadMetadata,
    ) -> StorageResult:
        """
        Save a file under a derived, unique path.

        Args:
            data: File content
            filename: Original filename (sanitized here)
            metadata: Upload metadata

        Returns:
            StorageResult; failures carry DISK_FULL, PERMISSION_DENIED,
            INVALID_PATH or UPLOAD_FAILED
        """
        unique_filename = generate_unique_filename(filename)
        relative_path = self.build_storage_path(metadata, unique_filename)
        return await self.upload_to_path(data, relative_path)

    async def upload_to_path(self, data: bytes, path: str) -> StorageResult:
        """Atomically write data to a fixed relative path."""
        try:
            target = self._resolve(path)
        except StorageError as e:
            logger.warning(f"Rejected upload path {path!r}: {e.message}")
            return StorageResult.failed(e.error_type, "Invalid storage path detected")

        relative_path = sanitize_storage_path(path)
        try:
            size = await asyncio.to_thread(self._write_atomic, target, data)
        except OSError as e:
            error_type = _error_type_for(e, StorageErrorType.UPLOAD_FAILED)
            if error_type == StorageErrorType.FILE_NOT_FOUND:
                error_type = StorageErrorType.UPLOAD_FAILED
            logger.error(f"Upload to {relative_path} failed: {e}")
            messages = {
                StorageErrorType.DISK_FULL: "Insufficient disk space",
                StorageErrorType.PERMISSION_DENIED: "Permission denied",
            }
            return StorageResult.failed(
                error_type, messages.get(error_type, "File upload failed"))

        logger.info(f"Stored {size} bytes at {relative_path}")
        return StorageResult.ok(relative_path, size)

    async def download(self, path: str) -> bytes:
        """Read a stored file."""
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except IsADirectoryError as e:
            raise StorageError(
                StorageErrorType.FILE_NOT_FOUND, f"File not found: {path}", e) from e
        except OSError as e:
            error_type = _error_type_for(e, StorageErrorType.DOWNLOAD_FAILED)
            if error_type == StorageErrorType.DISK_FULL:
                error_type = StorageErrorType.DOWNLOAD_FAILED
            message = "File not found" if error_type == StorageErrorType.FILE_NOT_FOUND \
                else "Failed to download file"
            raise StorageError(error_type, f"{message}: {path}", e) from e

    async def delete(self, path: str) -> None:
        """Delete a stored file and prune empty parent directories."""
        target = self._resolve(path)
        try:
            await asyncio.to_thread(self._remove, target)
        except OSError as e:
            logger.error(f"Delete of {path} failed: {e}")
            raise StorageError(
                StorageErrorType.DELETE_FAILED, f"Failed to delete file: {path}", e) from e
        logger.info(f"Deleted {path}")

    async def exists(self, path: str) -> bool:
        """Check whether a regular file exists at path."""
        target = self._resolve(path)
        return await asyncio.to_thread(target.is_file)

    async def move(self, source_path: str, destination_path: str) -> None:
        """Atomically move a stored file within the base directory."""
        source = self._resolve(source_path)
        destination = self._resolve(destination_path)
        try:
            await asyncio.to_thread(self._move, source, destination)
        except FileNotFoundError as e:
            raise StorageError(
                StorageErrorType.FILE_NOT_FOUND, f"File not found: {source_path}", e) from e
        except OSError as e:
            raise StorageError(
                StorageErrorType.MOVE_FAILED,
                f"Failed to move {source_path} to {destination_path}",
                e,
            ) from e
        logger.info(f"Moved {source_path} to {destination_path}")

    def _check_writable(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        if not os.access(self.base_dir, os.W_OK):
            raise PermissionError(errno.EACCES, "Base directory is not writable",
                                  str(self.base_dir))

    async def test_connection(self) -> dict[str, Any]:
        """Verify the base directory exists (creating it) and is writable."""
        try:
            await asyncio.to_thread(self._check_writable)
        except OSError as e:
            return {"success": False, "backend": self.name, "error": str(e)}
        return {"success": True, "backend": self.name, "base_dir": str(self.base_dir)}
