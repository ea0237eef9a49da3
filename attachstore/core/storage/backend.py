"""Abstract storage backend for invoice attachments."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from .errors import StorageError, StorageErrorType
from .validator import validate_storage_path


class StorageCapability(str, Enum):
    """Optional operations a backend may support."""
    MOVE = "move"
    UPLOAD_TO_PATH = "upload_to_path"
    PUBLIC_URL = "public_url"


@dataclass
class UploadMetadata:
    """
    Metadata passed to StorageBackend.upload().

    invoice_date, is_recurring and profile_name only influence the
    derived storage path.
    """
    invoice_id: int | str
    user_id: int | str
    original_name: str
    mime_type: str
    invoice_date: date | datetime | None = None
    is_recurring: bool = False
    profile_name: str | None = None


@dataclass
class StorageResult:
    """Outcome of an upload. Expected failures are reported here, not raised."""
    success: bool
    path: str | None = None
    size: int | None = None
    error: str | None = None
    error_type: StorageErrorType | None = None

    @classmethod
    def ok(cls, path: str, size: int) -> StorageResult:
        return cls(success=True, path=path, size=size)

    @classmethod
    def failed(cls, error_type: StorageErrorType, error: str) -> StorageResult:
        return cls(success=False, error=error, error_type=error_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "path": self.path,
            "size": self.size,
            "error": self.error,
            "error_type": self.error_type.value if self.error_type else None,
        }


class StorageBackend(ABC):
    """
    Abstract storage backend for attachment bytes.

    Implementations:
    - LocalStorageBackend: local filesystem
    - SharePointStorageBackend: SharePoint document library via Microsoft Graph

    Paths returned by upload() are backend-relative and only meaningful to
    the backend that produced them. Optional operations are advertised
    through `capabilities`; check supports() before calling them.
    """

    name: str = "abstract"
    capabilities: frozenset[StorageCapability] = frozenset()

    def supports(self, capability: StorageCapability) -> bool:
        """Check whether an optional operation is available."""
        return capability in self.capabilities

    @abstractmethod
    async def upload(
        self,
        data: bytes,
        filename: str,
        metadata: UploadMetadata,
    ) -> StorageResult:
        """
        Store a file under a freshly derived, unique path.

        Args:
            data: File content
            filename: Original (unsanitized) filename
            metadata: Upload metadata

        Returns:
            StorageResult with the storage path and stored size, or a
            failure with error and error_type set
        """

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """
        Read a stored file.

        Raises:
            StorageError: FILE_NOT_FOUND, INVALID_PATH, PERMISSION_DENIED
                or DOWNLOAD_FAILED
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """
        Delete a stored file. Deleting a missing file succeeds.

        Raises:
            StorageError: INVALID_PATH or DELETE_FAILED
        """

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """
        Check whether a file exists at path.

        A missing file is False, never an error. A backend that cannot answer
        (transport or permission failure) raises DOWNLOAD_FAILED, the read-path
        error type.

        Raises:
            StorageError: INVALID_PATH, DOWNLOAD_FAILED
        """

    async def move(self, source_path: str, destination_path: str) -> None:
        """Move a stored file (StorageCapability.MOVE)."""
        raise NotImplementedError(f"{self.name} backend does not support move")

    async def upload_to_path(self, data: bytes, path: str) -> StorageResult:
        """
        Store a file at a caller-chosen path, bypassing path derivation
        (StorageCapability.UPLOAD_TO_PATH).
        """
        raise NotImplementedError(
            f"{self.name} backend does not support upload_to_path")

    def get_public_url(self, path: str) -> str | None:
        """Public URL for a stored file, or None where there is no such concept."""
        return None

    async def test_connection(self) -> dict[str, Any]:
        """Check that the backend is reachable. Returns {"success": bool, ...}."""
        return {"success": True, "backend": self.name}

    async def aclose(self) -> None:
        """Release resources held by the backend."""

    async def __aenter__(self) -> StorageBackend:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @staticmethod
    def ensure_safe_path(path: str) -> None:
        """
        Reject unsafe storage paths before any I/O.

        Raises:
            StorageError: INVALID_PATH
        """
        if not isinstance(path, str) or not validate_storage_path(path):
            raise StorageError(
                StorageErrorType.INVALID_PATH,
                f"Invalid storage path: {path!r}",
            )
