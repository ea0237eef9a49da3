"""
SQL implementation of attachment metadata storage.

Datetimes are stored as naive UTC and returned timezone-aware (UTC).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Index,
    String, Integer, DateTime,
    select, insert, update, delete, and_, or_, func
)
from sqlalchemy.exc import IntegrityError

from attachstore.logging.setup import get_logger

from .models import AttachmentRecord, CleanupSummary
from .store import AttachmentStore

logger = get_logger(__name__)


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLAttachmentStore(AttachmentStore):
    """SQL implementation of attachment metadata storage."""

    def __init__(self, connection_string: str):
        """
        Initialize SQL attachment storage.

        Args:
            connection_string: Database connection string
        """
        self.engine = create_engine(connection_string)
        self.metadata = MetaData()

        self.attachments_table = Table(
            "attachments", self.metadata,
            Column("id", String(36), primary_key=True),
            Column("invoice_id", String(255), nullable=False),
            Column("storage_path", String(1024), nullable=False, unique=True),
            Column("original_name", String(255), nullable=False),
            Column("size_bytes", Integer, nullable=False),
            Column("mime_type", String(100), nullable=False),
            Column("uploaded_by", String(255), nullable=False),
            Column("created_at", DateTime, nullable=False),
            Column("deleted_at", DateTime),
            Column("deleted_by", String(255)),
            Index("ix_attachments_invoice_id", "invoice_id"),
            Index("ix_attachments_deleted_at_id", "deleted_at", "id"),
        )

        self.leases_table = Table(
            "storage_leases", self.metadata,
            Column("name", String(100), primary_key=True),
            Column("owner", String(255), nullable=False),
            Column("expires_at", DateTime, nullable=False),
        )

        self.metadata.create_all(self.engine)

        logger.info("SQL attachment storage initialized")

    def _execute(self, query) -> int:
        """Execute a write query and return the affected row count."""
        with self.engine.connect() as conn:
            result = conn.execute(query)
            conn.commit()
            return result.rowcount

    def _fetchall(self, query) -> list:
        with self.engine.connect() as conn:
            return conn.execute(query).fetchall()

    def _fetchone(self, query):
        with self.engine.connect() as conn:
            return conn.execute(query).fetchone()

    def _row_to_record(self, row) -> AttachmentRecord:
        r = row._mapping
        return AttachmentRecord(
            id=r['id'],
            invoice_id=r['invoice_id'],
            storage_path=r['storage_path'],
            original_name=r['original_name'],
            size_bytes=r['size_bytes'],
            mime_type=r['mime_type'],
            uploaded_by=r['uploaded_by'],
            created_at=_from_db(r['created_at']),
            deleted_at=_from_db(r['deleted_at']),
            deleted_by=r['deleted_by'],
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def create(self, record: AttachmentRecord) -> str:
        try:
            query = insert(self.attachments_table).values(
                id=record.id,
                invoice_id=str(record.invoice_id),
                storage_path=record.storage_path,
                original_name=record.original_name,
                size_bytes=record.size_bytes,
                mime_type=record.mime_type,
                uploaded_by=str(record.uploaded_by),
                created_at=_to_db(record.created_at),
                deleted_at=_to_db(record.deleted_at),
                deleted_by=record.deleted_by,
            )
            self._execute(query)
        except IntegrityError as e:
            logger.error(f"Failed to store attachment record: {e}")
            raise ValueError(f"Attachment record storage failed: {e}")

        logger.info(f"Stored attachment record: {record.id}")
        return record.id

    def get(self, attachment_id: str) -> AttachmentRecord | None:
        query = select(self.attachments_table).where(
            self.attachments_table.c.id == attachment_id
        )
        row = self._fetchone(query)
        return self._row_to_record(row) if row else None

    def list_for_invoice(
        self,
        invoice_id: str,
        include_deleted: bool = False,
    ) -> list[AttachmentRecord]:
        table = self.attachments_table
        conditions = [table.c.invoice_id == str(invoice_id)]
        if not include_deleted:
            conditions.append(table.c.deleted_at.is_(None))

        query = select(table).where(and_(*conditions)).order_by(
            table.c.created_at, table.c.id)
        return [self._row_to_record(row) for row in self._fetchall(query)]

    def count_active_for_invoice(self, invoice_id: str) -> int:
        table = self.attachments_table
        query = select(func.count(table.c.id)).where(and_(
            table.c.invoice_id == str(invoice_id),
            table.c.deleted_at.is_(None),
        ))
        return self._fetchone(query)[0] or 0

    def soft_delete(self, attachment_id: str, deleted_by: str) -> bool:
        table = self.attachments_table
        query = update(table).where(and_(
            table.c.id == attachment_id,
            table.c.deleted_at.is_(None),
        )).values(deleted_at=_to_db(_utcnow()), deleted_by=str(deleted_by))

        updated = self._execute(query) > 0
        if updated:
            logger.info(f"Soft-deleted attachment: {attachment_id}")
        return updated

    def restore(self, attachment_id: str) -> bool:
        table = self.attachments_table
        query = update(table).where(and_(
            table.c.id == attachment_id,
            table.c.deleted_at.is_not(None),
        )).values(deleted_at=None, deleted_by=None)

        restored = self._execute(query) > 0
        if restored:
            logger.info(f"Restored attachment: {attachment_id}")
        return restored

    def hard_delete(self, attachment_id: str) -> bool:
        query = delete(self.attachments_table).where(
            self.attachments_table.c.id == attachment_id
        )
        deleted = self._execute(query) > 0
        if deleted:
            logger.info(f"Hard-deleted attachment record: {attachment_id}")
        return deleted

    # ------------------------------------------------------------------
    # Cleanup queries
    # ------------------------------------------------------------------

    def list_soft_deleted(
        self,
        cutoff: datetime,
        limit: int,
        after: tuple[datetime, str] | None = None,
    ) -> list[AttachmentRecord]:
        table = self.attachments_table
        conditions = [
            table.c.deleted_at.is_not(None),
            table.c.deleted_at < _to_db(cutoff),
        ]
        if after is not None:
            after_deleted_at, after_id = _to_db(after[0]), after[1]
            conditions.append(or_(
                table.c.deleted_at > after_deleted_at,
                and_(table.c.deleted_at == after_deleted_at, table.c.id > after_id),
            ))

        query = (
            select(table)
            .where(and_(*conditions))
            .order_by(table.c.deleted_at, table.c.id)
            .limit(limit)
        )
        return [self._row_to_record(row) for row in self._fetchall(query)]

    def pending_cleanup_summary(self, cutoff: datetime) -> CleanupSummary:
        table = self.attachments_table
        query = select(
            func.count(table.c.id).label('total_deleted'),
            func.min(table.c.deleted_at).label('oldest'),
            func.max(table.c.deleted_at).label('newest'),
            func.sum(table.c.size_bytes).label('total_bytes'),
        ).where(and_(
            table.c.deleted_at.is_not(None),
            table.c.deleted_at < _to_db(cutoff),
        ))
        r = self._fetchone(query)._mapping
        return CleanupSummary(
            total_deleted=r['total_deleted'] or 0,
            oldest_deleted_at=_from_db(r['oldest']),
            newest_deleted_at=_from_db(r['newest']),
            total_size_bytes=int(r['total_bytes'] or 0),
        )

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def acquire_lease(self, name: str, owner: str, ttl_seconds: int) -> bool:
        table = self.leases_table
        now = _to_db(_utcnow())
        expires_at = now + timedelta(seconds=ttl_seconds)

        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    select(table).where(table.c.name == name)
                ).fetchone()

                if row is None:
                    conn.execute(insert(table).values(
                        name=name, owner=owner, expires_at=expires_at))
                    return True

                current = row._mapping
                if current['owner'] != owner and current['expires_at'] > now:
                    return False

                # Guard against another owner taking it in between
                result = conn.execute(update(table).where(and_(
                    table.c.name == name,
                    table.c.owner == current['owner'],
                    table.c.expires_at == current['expires_at'],
                )).values(owner=owner, expires_at=expires_at))
                return result.rowcount > 0
        except IntegrityError:
            logger.info(f"Lease {name} was taken concurrently")
            return False

    def release_lease(self, name: str, owner: str) -> None:
        table = self.leases_table
        self._execute(delete(table).where(and_(
            table.c.name == name,
            table.c.owner == owner,
        )))
