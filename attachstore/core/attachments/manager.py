"""Attachment manager: validated uploads and record-aware downloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from attachstore.core.storage.backend import StorageBackend, UploadMetadata
from attachstore.core.storage.errors import StorageError, StorageErrorType
from attachstore.core.storage.validator import (
    DEFAULT_MAX_FILES_PER_INVOICE,
    FileValidator,
)
from attachstore.logging.setup import get_logger

from .models import AttachmentRecord
from .store import AttachmentStore

logger = get_logger(__name__)


class AttachmentValidationError(ValueError):
    """Upload rejected by validation. `errors` lists every violated rule."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) or "File validation failed")
        self.errors = list(errors)


class AttachmentLimitError(ValueError):
    """The invoice already holds the maximum number of attachments."""
    pass


class AttachmentManager:
    """
    High-level attachment operations on top of a storage backend and a
    metadata store.

    Features:
    - Upload with full validation before any backend call
    - Per-invoice attachment limit
    - Downloads only for active (not soft-deleted) records
    - Soft delete
    """

    def __init__(
        self,
        storage_backend: StorageBackend,
        store: AttachmentStore,
        validator: FileValidator | None = None,
        config: Any = None,
    ):
        """
        Initialize attachment manager.

        Args:
            storage_backend: Backend holding attachment bytes
            store: Metadata store holding attachment records
            validator: Upload validator (built from config when omitted)
            config: StorageSettings-like object (max_file_size,
                max_files_per_invoice, allowed_types)
        """
        self.storage = storage_backend
        self.store = store
        self.config = config
        self.validator = validator or FileValidator(config)

    @property
    def max_files_per_invoice(self) -> int:
        return getattr(self.config, "max_files_per_invoice", None) \
            or DEFAULT_MAX_FILES_PER_INVOICE

    async def upload_attachment(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        invoice_id: int | str,
        uploaded_by: int | str,
        invoice_date: date | datetime | None = None,
        is_recurring: bool = False,
        profile_name: str | None = None,
    ) -> AttachmentRecord:
        """
        Validate, store and record an attachment.

        Args:
            data: File content
            filename: Original filename
            mime_type: MIME type declared by the client
            invoice_id: Owning invoice
            uploaded_by: Uploading user
            invoice_date: Invoice date (drives the storage path)
            is_recurring: Whether the invoice belongs to a recurring profile
            profile_name: Recurring profile name

        Returns:
            The persisted AttachmentRecord

        Raises:
            AttachmentValidationError: If the file fails validation
            AttachmentLimitError: If the invoice is at its attachment limit
            StorageError: If the backend rejects the upload
            ValueError: If the record cannot be persisted (other store errors
                propagate unchanged; the stored file is removed either way)
        """
        # 1. Validate before touching the backend
        validation = self.validator.validate_upload(data, filename, mime_type)
        if not validation.valid:
            logger.warning(
                f"Rejected upload {filename!r} for invoice {invoice_id}: "
                f"{validation.errors}")
            raise AttachmentValidationError(validation.errors)

        # 2. Per-invoice limit
        current = self.store.count_active_for_invoice(str(invoice_id))
        if current >= self.max_files_per_invoice:
            raise AttachmentLimitError(
                f"Maximum {self.max_files_per_invoice} attachments per invoice "
                f"reached")

        # 3. Store bytes
        metadata = UploadMetadata(
            invoice_id=invoice_id,
            user_id=uploaded_by,
            original_name=filename,
            mime_type=mime_type,
            invoice_date=invoice_date,
            is_recurring=is_recurring,
            profile_name=profile_name,
        )
        result = await self.storage.upload(data, filename, metadata)
        if not result.success:
            raise StorageError(
                result.error_type or StorageErrorType.UPLOAD_FAILED,
                result.error or "File upload failed",
            )

        # 4. Persist the record; remove the orphaned object if that fails
        record = AttachmentRecord.create_new(
            invoice_id=invoice_id,
            storage_path=result.path,
            original_name=filename,
            size_bytes=result.size if result.size is not None else len(data),
            mime_type=mime_type,
            uploaded_by=uploaded_by,
        )
        try:
            self.store.create(record)
        except Exception:
            logger.error(
                f"Could not record attachment at {result.path}; removing stored file")
            try:
                await self.storage.delete(result.path)
            except StorageError as e:
                logger.error(f"Failed to remove orphaned file {result.path}: {e}")
            raise

        logger.info(
            f"Uploaded attachment {record.id} for invoice {invoice_id} "
            f"({record.size_bytes} bytes)")
        return record

    def _active_record(self, attachment_id: str) -> AttachmentRecord:
        record = self.store.get(attachment_id)
        if record is None or record.is_deleted:
            raise StorageError(
                StorageErrorType.FILE_NOT_FOUND,
                f"Attachment not found: {attachment_id}",
            )
        return record

    async def get_attachment_content(
        self,
        attachment_id: str,
    ) -> tuple[bytes, AttachmentRecord]:
        """
        Fetch an attachment's bytes and record.

        Raises:
            StorageError: FILE_NOT_FOUND for unknown or soft-deleted
                attachments, or any backend download failure
        """
        record = self._active_record(attachment_id)
        data = await self.storage.download(record.storage_path)
        return data, record

    async def soft_delete_attachment(self, attachment_id: str, deleted_by: int | str) -> bool:
        """
        Soft-delete an attachment. The file stays until cleanup removes it.

        Returns:
            True if the attachment was active and is now marked deleted
        """
        deleted = self.store.soft_delete(attachment_id, str(deleted_by))
        if not deleted:
            logger.info(f"Attachment {attachment_id} not found or already deleted")
        return deleted

    async def list_attachments(
        self,
        invoice_id: int | str,
        include_deleted: bool = False,
    ) -> list[AttachmentRecord]:
        """List an invoice's attachments, oldest first."""
        return self.store.list_for_invoice(str(invoice_id), include_deleted=include_deleted)
