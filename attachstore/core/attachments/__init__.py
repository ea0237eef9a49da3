"""Attachment records, uploads and lifecycle cleanup."""

from .models import AttachmentRecord, CleanupSummary
from .store import AttachmentStore
from .sql_store import SQLAttachmentStore
from .manager import AttachmentManager, AttachmentLimitError, AttachmentValidationError
from .cleanup import (
    CleanupResult,
    CleanupService,
    CleanupStats,
    OperationResult,
    format_cleanup_stats,
)

__all__ = [
    'AttachmentRecord',
    'CleanupSummary',
    'AttachmentStore',
    'SQLAttachmentStore',
    'AttachmentManager',
    'AttachmentLimitError',
    'AttachmentValidationError',
    'CleanupResult',
    'CleanupService',
    'CleanupStats',
    'OperationResult',
    'format_cleanup_stats',
]
