"""Attachment storage backends, validation and backend selection."""

from __future__ import annotations

from .errors import StorageError, StorageErrorType, StorageConfigurationError
from .validator import FileValidator, ValidationResult, validate_file_upload
from .backend import StorageBackend, StorageCapability, StorageResult, UploadMetadata
from .local_backend import LocalStorageBackend
from .graph_client import GraphAPIError, GraphClient
from .sharepoint_backend import SharePointStorageBackend
from .factory import ConfigValidationResult, create_storage_backend, validate_storage_config

__all__ = [
    "StorageError",
    "StorageErrorType",
    "StorageConfigurationError",
    "FileValidator",
    "ValidationResult",
    "validate_file_upload",
    "StorageBackend",
    "StorageCapability",
    "StorageResult",
    "UploadMetadata",
    "LocalStorageBackend",
    "GraphAPIError",
    "GraphClient",
    "SharePointStorageBackend",
    "ConfigValidationResult",
    "create_storage_backend",
    "validate_storage_config",
]
