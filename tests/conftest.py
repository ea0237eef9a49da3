"""
attachstore test configuration.

This module provides pytest fixtures for:
- Isolated configuration and logging state
- Temporary storage directories and SQLite metadata stores
- Sample file contents with valid magic numbers
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from attachstore.config.settings import ConfigManager
from attachstore.core.attachments import AttachmentRecord, SQLAttachmentStore
from attachstore.core.storage import LocalStorageBackend
from attachstore.logging.setup import reset_logging


@pytest.fixture(scope="session", autouse=True)
def clear_env_vars():
    """
    Clear ATTACHSTORE environment variables at session start so a developer's
    environment cannot leak into test configuration.
    """
    original_values = {
        key: value for key, value in os.environ.items()
        if key.startswith("ATTACHSTORE_")
    }
    for key in original_values:
        del os.environ[key]

    yield

    os.environ.update(original_values)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset configuration and logging singletons around every test."""
    ConfigManager.reset_instance()
    reset_logging()
    yield
    ConfigManager.reset_instance()
    reset_logging()


@pytest.fixture
def storage_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def local_backend(storage_dir):
    return LocalStorageBackend(storage_dir)


@pytest.fixture
def attachment_store(tmp_path):
    return SQLAttachmentStore(f"sqlite:///{tmp_path / 'attachments.db'}")


@pytest.fixture
def pdf_bytes():
    return b"%PDF-1.7\n" + b"0" * 1024 + b"\n%%EOF"


@pytest.fixture
def png_bytes():
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def jpeg_bytes():
    return b"\xFF\xD8\xFF\xE0" + b"\x00" * 64


def make_record(
    storage_path,
    invoice_id="42",
    deleted_days_ago=None,
    size_bytes=100,
    record_id=None,
):
    """Build an AttachmentRecord, optionally soft-deleted N days ago."""
    record = AttachmentRecord.create_new(
        invoice_id=invoice_id,
        storage_path=storage_path,
        original_name=os.path.basename(storage_path),
        size_bytes=size_bytes,
        mime_type="application/pdf",
        uploaded_by="7",
    )
    if record_id is not None:
        record.id = record_id
    if deleted_days_ago is not None:
        record.deleted_at = datetime.now(timezone.utc) - timedelta(days=deleted_days_ago)
        record.deleted_by = "7"
    return record


@pytest.fixture
def record_factory():
    return make_record
