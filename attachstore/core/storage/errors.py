"""Error types shared by all storage backends."""

from __future__ import annotations

from enum import Enum


class StorageErrorType(str, Enum):
    """Failure categories exposed to callers of a storage backend."""
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DISK_FULL = "DISK_FULL"
    INVALID_PATH = "INVALID_PATH"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    MOVE_FAILED = "MOVE_FAILED"


class StorageError(Exception):
    """
    Typed storage failure.

    Attributes:
        error_type: Failure category
        message: Human-readable description
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        error_type: StorageErrorType,
        message: str,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.error_type.value}] {self.message}"


class StorageConfigurationError(ValueError):
    """Raised when a backend cannot be built from the given settings."""
    pass
