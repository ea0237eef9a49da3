"""
Storage backend factory.

Builds the backend selected by StorageSettings.provider. Settings are passed
in explicitly; nothing here reads the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from attachstore.config.settings import (
    SUPPORTED_PROVIDERS,
    UPLOAD_CHUNK_ALIGNMENT,
    StorageSettings,
)
from attachstore.logging.setup import get_logger

from .backend import StorageBackend
from .errors import StorageConfigurationError
from .local_backend import LocalStorageBackend
from .sharepoint_backend import SharePointStorageBackend

logger = get_logger(__name__)


@dataclass
class ConfigValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


def _missing_settings(section: Any, label: str, required: dict[str, str]) -> list[str]:
    return [
        f"{name} is required for {label} provider."
        for attr, name in required.items()
        if not getattr(section, attr, None)
    ]


def validate_storage_config(settings: StorageSettings) -> ConfigValidationResult:
    """
    Check storage settings without building a backend.

    Never raises; every problem found is listed in the result.
    """
    errors: list[str] = []
    provider = settings.provider

    if provider not in SUPPORTED_PROVIDERS:
        errors.append(
            f"Invalid storage provider: {provider}. "
            f"Must be one of: {', '.join(SUPPORTED_PROVIDERS)}.")

    if settings.max_file_size <= 0:
        errors.append("max_file_size must be a positive number.")

    if settings.max_files_per_invoice <= 0:
        errors.append("max_files_per_invoice must be a positive number.")

    if provider == "sharepoint":
        errors.extend(_missing_settings(settings.sharepoint, "SharePoint", {
            "tenant_id": "tenant_id",
            "client_id": "client_id",
            "client_secret": "client_secret",
            "site_id": "site_id",
        }))
        if settings.sharepoint.chunk_size % UPLOAD_CHUNK_ALIGNMENT != 0:
            errors.append(
                f"sharepoint.chunk_size must be a multiple of {UPLOAD_CHUNK_ALIGNMENT} bytes.")

    elif provider == "s3":
        errors.extend(_missing_settings(settings.s3, "S3", {
            "bucket": "bucket",
            "region": "region",
            "access_key_id": "access_key_id",
            "secret_access_key": "secret_access_key",
        }))

    elif provider == "r2":
        errors.extend(_missing_settings(settings.r2, "R2", {
            "bucket": "bucket",
            "endpoint": "endpoint",
            "access_key_id": "access_key_id",
            "secret_access_key": "secret_access_key",
        }))

    return ConfigValidationResult(valid=not errors, errors=errors)


def create_storage_backend(settings: StorageSettings, **kwargs: Any) -> StorageBackend:
    """
    Create the storage backend selected by settings.provider.

    Args:
        settings: Storage settings
        **kwargs: Passed to the backend constructor (e.g. client= for SharePoint)

    Returns:
        A StorageBackend instance

    Raises:
        StorageConfigurationError: Unknown or unimplemented provider, or
            missing provider settings
    """
    provider = settings.provider

    if provider == "local":
        logger.info(f"Using local storage backend at {settings.local.base_dir}")
        return LocalStorageBackend(settings.local.base_dir)

    if provider == "sharepoint":
        result = validate_storage_config(settings)
        if not result.valid:
            raise StorageConfigurationError(
                "Invalid SharePoint configuration: " + " ".join(result.errors))
        logger.info("Using SharePoint storage backend")
        return SharePointStorageBackend(settings.sharepoint, **kwargs)

    if provider in ("s3", "r2"):
        raise StorageConfigurationError(
            f"{provider.upper()} storage provider is not yet implemented. "
            f"Use provider 'local' or 'sharepoint'.")

    raise StorageConfigurationError(
        f"Unknown storage provider: {provider}. "
        f"Supported: {', '.join(SUPPORTED_PROVIDERS)}.")
