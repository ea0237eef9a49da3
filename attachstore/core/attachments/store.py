"""
Attachment metadata store interface.

The store owns attachment records; storage backends own the bytes. The
cleanup service and the attachment manager talk to both.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from .models import AttachmentRecord, CleanupSummary


class AttachmentStore(ABC):
    """Abstract interface for attachment metadata storage."""

    @abstractmethod
    def create(self, record: AttachmentRecord) -> str:
        """
        Persist a new record and return its id.

        Raises:
            ValueError: If the record cannot be stored
        """
        pass

    @abstractmethod
    def get(self, attachment_id: str) -> AttachmentRecord | None:
        """Fetch a record (soft-deleted ones included), or None."""
        pass

    @abstractmethod
    def list_for_invoice(
        self,
        invoice_id: str,
        include_deleted: bool = False,
    ) -> list[AttachmentRecord]:
        """List an invoice's records, oldest first."""
        pass

    @abstractmethod
    def count_active_for_invoice(self, invoice_id: str) -> int:
        """Count records of an invoice that are not soft-deleted."""
        pass

    @abstractmethod
    def soft_delete(self, attachment_id: str, deleted_by: str) -> bool:
        """
        Mark a record deleted.

        Returns:
            True if an active record was marked, False otherwise
        """
        pass

    @abstractmethod
    def restore(self, attachment_id: str) -> bool:
        """Clear deleted_at/deleted_by. Returns False if nothing changed."""
        pass

    @abstractmethod
    def hard_delete(self, attachment_id: str) -> bool:
        """Remove a record permanently. Returns False if it did not exist."""
        pass

    @abstractmethod
    def list_soft_deleted(
        self,
        cutoff: datetime,
        limit: int,
        after: tuple[datetime, str] | None = None,
    ) -> list[AttachmentRecord]:
        """
        Page through records soft-deleted before cutoff.

        Ordered by (deleted_at, id). Pass the (deleted_at, id) of the last
        record of the previous page as `after` to get the next page.
        """
        pass

    @abstractmethod
    def pending_cleanup_summary(self, cutoff: datetime) -> CleanupSummary:
        """Count, date range and total size of records soft-deleted before cutoff."""
        pass

    @abstractmethod
    def acquire_lease(self, name: str, owner: str, ttl_seconds: int) -> bool:
        """
        Take a named advisory lease.

        Succeeds if the lease is free, expired, or already held by owner.
        """
        pass

    @abstractmethod
    def release_lease(self, name: str, owner: str) -> None:
        """Release a lease held by owner; a no-op otherwise."""
        pass
