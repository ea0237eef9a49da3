"""
Attachment metadata models.

The storage core only interprets storage_path; every other field is carried
through for the application that owns the records.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any


@dataclass
class AttachmentRecord:
    """
    Metadata for one stored attachment.

    A record with deleted_at set is soft-deleted: hidden from users but
    restorable until cleanup hard-deletes it.
    """

    id: str
    invoice_id: str
    storage_path: str
    original_name: str
    size_bytes: int
    mime_type: str
    uploaded_by: str
    created_at: datetime
    deleted_at: datetime | None = None
    deleted_by: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def create_new(
        cls,
        invoice_id: int | str,
        storage_path: str,
        original_name: str,
        size_bytes: int,
        mime_type: str,
        uploaded_by: int | str,
    ) -> AttachmentRecord:
        """Create a new record with an auto-generated id."""
        return cls(
            id=str(uuid.uuid4()),
            invoice_id=str(invoice_id),
            storage_path=storage_path,
            original_name=original_name,
            size_bytes=size_bytes,
            mime_type=mime_type,
            uploaded_by=str(uploaded_by),
            created_at=datetime.now(timezone.utc),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["deleted_at"] = self.deleted_at.isoformat() if self.deleted_at else None
        return data


@dataclass
class CleanupSummary:
    """Aggregate over soft-deleted records older than a cutoff."""
    total_deleted: int
    oldest_deleted_at: datetime | None
    newest_deleted_at: datetime | None
    total_size_bytes: int
