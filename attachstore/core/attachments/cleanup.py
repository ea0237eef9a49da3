"""
Lifecycle cleanup for soft-deleted attachments.

Meant to be run by a scheduler or an administrator (see the admin CLI).
Physical files are deleted before their records so a failure never leaves a
record pointing at nothing without also leaving it soft-deleted.
"""

from __future__ import annotations

import os
import socket
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from attachstore.core.storage.backend import StorageBackend
from attachstore.core.storage.validator import format_file_size
from attachstore.logging.setup import get_logger

from .store import AttachmentStore

logger = get_logger(__name__)

CLEANUP_LEASE_NAME = "attachment-cleanup"


@dataclass
class CleanupResult:
    success: bool = True
    deleted_files: int = 0
    deleted_records: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    would_delete: int = 0
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "deleted_files": self.deleted_files,
            "deleted_records": self.deleted_records,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "would_delete": self.would_delete,
            "dry_run": self.dry_run,
        }


@dataclass
class OperationResult:
    success: bool
    error: str | None = None


@dataclass
class CleanupStats:
    total_deleted: int
    oldest_deleted_at: datetime | None
    newest_deleted_at: datetime | None
    total_size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_deleted": self.total_deleted,
            "oldest_deleted_at": self.oldest_deleted_at.isoformat()
            if self.oldest_deleted_at else None,
            "newest_deleted_at": self.newest_deleted_at.isoformat()
            if self.newest_deleted_at else None,
            "total_size_bytes": self.total_size_bytes,
        }


def _cutoff(older_than_days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=older_than_days)


def format_cleanup_stats(stats: CleanupStats) -> str:
    """Render cleanup statistics as a few human-readable lines."""
    lines = [
        f"Total deleted attachments pending cleanup: {stats.total_deleted}",
        f"Total size: {format_file_size(stats.total_size_bytes)}",
    ]
    if stats.oldest_deleted_at:
        lines.append(f"Oldest deleted: {stats.oldest_deleted_at.date().isoformat()}")
    if stats.newest_deleted_at:
        lines.append(f"Newest deleted: {stats.newest_deleted_at.date().isoformat()}")
    return "\n".join(lines)


class CleanupService:
    """
    Removes soft-deleted attachments (file, then record) and provides the
    related admin operations.

    Runs can be serialized across processes with an advisory lease kept in
    the metadata store.
    """

    def __init__(
        self,
        storage_backend: StorageBackend,
        store: AttachmentStore,
        use_lease: bool = True,
        lease_ttl_seconds: int = 900,
    ):
        self.storage = storage_backend
        self.store = store
        self.use_lease = use_lease
        self.lease_ttl_seconds = lease_ttl_seconds
        self.instance_id = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    @classmethod
    def from_config(
        cls,
        storage_backend: StorageBackend,
        store: AttachmentStore,
        config: Any,
    ) -> CleanupService:
        """Build a service from CleanupSettings (use_lease, lease_ttl_seconds)."""
        return cls(
            storage_backend,
            store,
            use_lease=config.use_lease,
            lease_ttl_seconds=config.lease_ttl_seconds,
        )

    async def cleanup_deleted_files(
        self,
        older_than_days: int = 30,
        dry_run: bool = False,
        batch_size: int = 50,
        max_batches: int | None = None,
    ) -> CleanupResult:
        """
        Delete files and records of attachments soft-deleted more than
        older_than_days ago.

        Records are processed in (deleted_at, id) order, batch_size at a time,
        until none are left or max_batches pages have been processed. A record
        whose file is already gone is skipped and kept; a failing record is
        reported in `errors` and kept soft-deleted. Neither stops the run.
        A metadata store failure ends the run early with success=False.

        Args:
            older_than_days: Minimum age of the soft delete
            dry_run: Only report what would be deleted
            batch_size: Records fetched per page
            max_batches: Optional bound on pages processed

        Returns:
            CleanupResult
        """
        result = CleanupResult(dry_run=dry_run)
        cutoff = _cutoff(older_than_days)

        try:
            acquired = not self.use_lease or self.store.acquire_lease(
                CLEANUP_LEASE_NAME, self.instance_id, self.lease_ttl_seconds)
        except Exception as e:
            logger.exception("Could not acquire cleanup lease")
            result.success = False
            result.errors.append(f"Cleanup failed: {e}")
            return result

        if not acquired:
            logger.warning("Cleanup lease is held by another run; not starting")
            result.success = False
            result.errors.append("Cleanup already in progress")
            return result

        logger.info(
            f"Starting cleanup: cutoff={cutoff.isoformat()}, "
            f"older_than_days={older_than_days}, dry_run={dry_run}, "
            f"batch_size={batch_size}")

        try:
            cursor: tuple[datetime, str] | None = None
            batches = 0
            while max_batches is None or batches < max_batches:
                records = self.store.list_soft_deleted(cutoff, batch_size, after=cursor)
                if not records:
                    break
                batches += 1
                last = records[-1]
                cursor = (last.deleted_at, last.id)

                for record in records:
                    try:
                        if not await self.storage.exists(record.storage_path):
                            logger.info(
                                f"File not found, skipping {record.id} "
                                f"({record.storage_path})")
                            result.skipped += 1
                            continue

                        if dry_run:
                            logger.info(
                                f"[DRY RUN] Would delete {record.id} "
                                f"({record.storage_path}, {record.original_name})")
                            result.would_delete += 1
                            continue

                        await self.storage.delete(record.storage_path)
                        result.deleted_files += 1
                        logger.info(f"Deleted file {record.storage_path} ({record.id})")

                        if self.store.hard_delete(record.id):
                            result.deleted_records += 1
                    except Exception as e:
                        logger.exception(f"Error processing attachment {record.id}")
                        result.errors.append(
                            f"Failed to process attachment {record.id}: {e}")
                        result.success = False
        except Exception as e:
            logger.exception("Cleanup run aborted")
            result.errors.append(f"Cleanup failed: {e}")
            result.success = False
        finally:
            if self.use_lease:
                try:
                    self.store.release_lease(CLEANUP_LEASE_NAME, self.instance_id)
                except Exception:
                    # Expires after lease_ttl_seconds
                    logger.exception("Could not release cleanup lease")

        logger.info(
            f"Cleanup finished: deleted_files={result.deleted_files}, "
            f"deleted_records={result.deleted_records}, skipped={result.skipped}, "
            f"would_delete={result.would_delete}, errors={len(result.errors)}")
        return result

    async def cleanup_orphaned_files(self, dry_run: bool = False) -> CleanupResult:
        """
        Remove stored files that have no record.

        Not implemented: backends expose no listing operation.
        """
        logger.info(f"Orphaned file cleanup requested (dry_run={dry_run}); not implemented")
        return CleanupResult(
            success=False,
            errors=[
                "Orphaned file cleanup not yet implemented. "
                "Use cleanup_deleted_files() instead."
            ],
            dry_run=dry_run,
        )

    async def force_delete_attachment(self, attachment_id: str) -> OperationResult:
        """Delete an attachment's file and record immediately, active or not."""
        record = self.store.get(attachment_id)
        if record is None:
            return OperationResult(success=False, error="Attachment not found")

        try:
            if await self.storage.exists(record.storage_path):
                await self.storage.delete(record.storage_path)
                logger.info(f"Force deleted file {record.storage_path} ({record.id})")
            self.store.hard_delete(record.id)
        except Exception as e:
            logger.exception(f"Force delete of {attachment_id} failed")
            return OperationResult(success=False, error=str(e))

        logger.info(f"Force deleted attachment record {record.id}")
        return OperationResult(success=True)

    async def restore_attachment(self, attachment_id: str) -> OperationResult:
        """Undo a soft delete, provided the file still exists."""
        record = self.store.get(attachment_id)
        if record is None:
            return OperationResult(success=False, error="Attachment not found")
        if not record.is_deleted:
            return OperationResult(success=False, error="Attachment is not deleted")

        try:
            if not await self.storage.exists(record.storage_path):
                return OperationResult(
                    success=False,
                    error="Physical file no longer exists, cannot restore",
                )
            if not self.store.restore(record.id):
                return OperationResult(
                    success=False,
                    error="Attachment changed during restore",
                )
        except Exception as e:
            logger.exception(f"Restore of {attachment_id} failed")
            return OperationResult(success=False, error=str(e))

        logger.info(f"Restored attachment {record.id}")
        return OperationResult(success=True)

    async def get_cleanup_stats(self, older_than_days: int = 30) -> CleanupStats:
        """Summarize attachments that a cleanup with the same age would consider."""
        summary = self.store.pending_cleanup_summary(_cutoff(older_than_days))
        return CleanupStats(
            total_deleted=summary.total_deleted,
            oldest_deleted_at=summary.oldest_deleted_at,
            newest_deleted_at=summary.newest_deleted_at,
            total_size_bytes=summary.total_size_bytes,
        )
