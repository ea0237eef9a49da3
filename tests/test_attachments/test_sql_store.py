"""Tests for SQLAttachmentStore."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


def test_create_and_get(attachment_store, record_factory):
    record = record_factory("invoices/2025/one-time/Jan/a.pdf")
    assert attachment_store.create(record) == record.id

    stored = attachment_store.get(record.id)
    assert stored.storage_path == record.storage_path
    assert stored.invoice_id == "42"
    assert stored.created_at.tzinfo is not None
    assert abs(stored.created_at - record.created_at) < timedelta(seconds=1)
    assert stored.deleted_at is None


def test_get_unknown(attachment_store):
    assert attachment_store.get("missing") is None


def test_duplicate_storage_path_rejected(attachment_store, record_factory):
    attachment_store.create(record_factory("same/path.pdf"))
    with pytest.raises(ValueError):
        attachment_store.create(record_factory("same/path.pdf"))


def test_list_and_count_for_invoice(attachment_store, record_factory):
    active = record_factory("a.pdf")
    deleted = record_factory("b.pdf", deleted_days_ago=1)
    other = record_factory("c.pdf", invoice_id="99")
    for record in (active, deleted, other):
        attachment_store.create(record)

    assert [r.id for r in attachment_store.list_for_invoice("42")] == [active.id]
    assert {r.id for r in attachment_store.list_for_invoice("42", include_deleted=True)} == \
        {active.id, deleted.id}
    assert attachment_store.count_active_for_invoice("42") == 1
    assert attachment_store.count_active_for_invoice("nothing") == 0


def test_soft_delete_and_restore(attachment_store, record_factory):
    record = record_factory("a.pdf")
    attachment_store.create(record)

    assert attachment_store.soft_delete(record.id, "admin")
    assert not attachment_store.soft_delete(record.id, "admin")
    stored = attachment_store.get(record.id)
    assert stored.is_deleted
    assert stored.deleted_by == "admin"

    assert attachment_store.restore(record.id)
    assert not attachment_store.restore(record.id)
    assert not attachment_store.get(record.id).is_deleted


def test_hard_delete(attachment_store, record_factory):
    record = record_factory("a.pdf")
    attachment_store.create(record)
    assert attachment_store.hard_delete(record.id)
    assert not attachment_store.hard_delete(record.id)
    assert attachment_store.get(record.id) is None


def test_list_soft_deleted_pages_with_cursor(attachment_store, record_factory):
    old = [record_factory(f"old/{i}.pdf", deleted_days_ago=40 + i) for i in range(5)]
    recent = record_factory("recent.pdf", deleted_days_ago=5)
    active = record_factory("active.pdf")
    for record in old + [recent, active]:
        attachment_store.create(record)

    cutoff = datetime.now(timezone.utc) - timedelta(days=30)
    first = attachment_store.list_soft_deleted(cutoff, limit=2)
    assert len(first) == 2
    second = attachment_store.list_soft_deleted(
        cutoff, limit=2, after=(first[-1].deleted_at, first[-1].id))
    third = attachment_store.list_soft_deleted(
        cutoff, limit=2, after=(second[-1].deleted_at, second[-1].id))

    seen = [r.id for r in first + second + third]
    # Oldest deletion first
    assert seen == [r.id for r in reversed(old)]


def test_list_soft_deleted_orders_ties_by_id(attachment_store, record_factory):
    deleted_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for record_id in ("b", "a", "c"):
        record = record_factory(f"{record_id}.pdf", record_id=record_id)
        record.deleted_at = deleted_at
        attachment_store.create(record)

    cutoff = datetime.now(timezone.utc)
    page = attachment_store.list_soft_deleted(cutoff, limit=2)
    assert [r.id for r in page] == ["a", "b"]
    rest = attachment_store.list_soft_deleted(cutoff, limit=2, after=(deleted_at, "b"))
    assert [r.id for r in rest] == ["c"]


def test_pending_cleanup_summary(attachment_store, record_factory):
    attachment_store.create(record_factory("a.pdf", deleted_days_ago=60, size_bytes=1000))
    attachment_store.create(record_factory("b.pdf", deleted_days_ago=45, size_bytes=500))
    attachment_store.create(record_factory("c.pdf", deleted_days_ago=1, size_bytes=50))

    summary = attachment_store.pending_cleanup_summary(
        datetime.now(timezone.utc) - timedelta(days=30))
    assert summary.total_deleted == 2
    assert summary.total_size_bytes == 1500
    assert summary.oldest_deleted_at < summary.newest_deleted_at

    empty = attachment_store.pending_cleanup_summary(
        datetime.now(timezone.utc) - timedelta(days=365))
    assert empty.total_deleted == 0
    assert empty.oldest_deleted_at is None
    assert empty.total_size_bytes == 0


def test_leases(attachment_store):
    assert attachment_store.acquire_lease("cleanup", "worker-1", ttl_seconds=60)
    # Re-entrant for the same owner
    assert attachment_store.acquire_lease("cleanup", "worker-1", ttl_seconds=60)
    assert not attachment_store.acquire_lease("cleanup", "worker-2", ttl_seconds=60)

    # Releasing someone else's lease does nothing
    attachment_store.release_lease("cleanup", "worker-2")
    assert not attachment_store.acquire_lease("cleanup", "worker-2", ttl_seconds=60)

    attachment_store.release_lease("cleanup", "worker-1")
    assert attachment_store.acquire_lease("cleanup", "worker-2", ttl_seconds=60)


def test_expired_lease_can_be_taken(attachment_store):
    assert attachment_store.acquire_lease("cleanup", "worker-1", ttl_seconds=60)
    with attachment_store.engine.begin() as conn:
        conn.execute(attachment_store.leases_table.update().values(
            expires_at=datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=1)))
    assert attachment_store.acquire_lease("cleanup", "worker-2", ttl_seconds=60)
