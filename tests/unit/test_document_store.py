"""
Unit tests for DocumentStore.

Run: pytest tests/unit/test_document_store.py -v
"""

import pytest
from unittest.mock import MagicMock

from exceptions import DatabaseError, DocumentNotFoundError
from services.document_store import DocumentStore, IMPORT_JOBS


class TestReadWrite:

    def test_set_then_get(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "queued", "total": 3})

        doc = store.get(IMPORT_JOBS, "job-1")

        assert doc["status"] == "queued"
        assert doc["total"] == 3
        assert doc["updated_at"]

    def test_get_missing_returns_none(self, store):
        assert store.get(IMPORT_JOBS, "nope") is None

    def test_set_without_merge_clears_other_columns(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "queued", "message": "hello"})

        store.set(IMPORT_JOBS, "job-1", {"status": "running"})

        doc = store.get(IMPORT_JOBS, "job-1")
        assert doc["status"] == "running"
        assert doc["message"] is None

    def test_set_with_merge_keeps_other_columns(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "queued", "message": "hello"})

        store.set(IMPORT_JOBS, "job-1", {"status": "running"}, merge=True)

        assert store.get(IMPORT_JOBS, "job-1")["message"] == "hello"

    def test_update_missing_raises_not_found(self, store):
        with pytest.raises(DocumentNotFoundError):
            store.update(IMPORT_JOBS, "gone", {"status": "running"})

    def test_delete_reports_whether_row_existed(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "queued"})

        assert store.delete(IMPORT_JOBS, "job-1") is True
        assert store.delete(IMPORT_JOBS, "job-1") is False

    def test_query_orders_and_limits(self, store):
        for i in range(3):
            store.set(IMPORT_JOBS, f"job-{i}", {"created_at": f"2025-01-0{i + 1}T00:00:00Z"})

        docs = store.query(IMPORT_JOBS, order_by="created_at", desc=True, limit=2)

        assert [d["id"] for d in docs] == ["job-2", "job-1"]

    def test_query_overlaps(self, store):
        store.set("merged_orders", "m1", {"transaction_ids": ["A", "B"]})
        store.set("merged_orders", "m2", {"transaction_ids": ["C", "D"]})

        docs = store.query_overlaps("merged_orders", "transaction_ids", ["B", "X"])

        assert [d["id"] for d in docs] == ["m1"]

    def test_client_failure_wrapped(self):
        client = MagicMock()
        client.table.side_effect = RuntimeError("connection reset")
        store = DocumentStore(client=client)

        with pytest.raises(DatabaseError):
            store.get(IMPORT_JOBS, "job-1")


class TestUpdateWhere:

    def test_updates_while_condition_holds(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "queued"})

        doc = store.update_where(IMPORT_JOBS, "job-1", {"status": "running"}, where={"status": "queued"})

        assert doc["status"] == "running"

    def test_condition_failing_leaves_row(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "cancelled"})

        assert store.update_where(IMPORT_JOBS, "job-1", {"status": "running"}, where={"status": "queued"}) is None
        assert store.get(IMPORT_JOBS, "job-1")["status"] == "cancelled"

    def test_missing_row_returns_none(self, store):
        assert store.update_where(IMPORT_JOBS, "gone", {"status": "running"}, where={"status": "queued"}) is None


class TestIncrement:
    """Tests for DocumentStore.increment()"""

    def test_adds_to_counters(self, store, mock_supabase):
        store.set(IMPORT_JOBS, "job-1", {"processed": 2, "created": 1})

        doc = store.increment(IMPORT_JOBS, "job-1", {"processed": 1, "created": 1})

        assert doc["processed"] == 3
        assert doc["created"] == 2
        assert mock_supabase.rpc_calls[0][0] == "increment_counters"

    def test_missing_row_raises(self, store):
        with pytest.raises(DocumentNotFoundError):
            store.increment(IMPORT_JOBS, "gone", {"processed": 1})


class TestWatch:
    """Tests for DocumentStore.watch()"""

    def test_yields_changes_then_none_on_delete(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "queued"})
        steps = iter([
            lambda: store.update(IMPORT_JOBS, "job-1", {"status": "running"}),
            lambda: store.delete(IMPORT_JOBS, "job-1"),
        ])

        def sleep(_):
            next(steps)()

        seen = list(store.watch(IMPORT_JOBS, "job-1", interval=0, sleep=sleep))

        assert [d["status"] if d else None for d in seen] == ["queued", "running", None]

    def test_stops_after_timeout(self, store):
        store.set(IMPORT_JOBS, "job-1", {"status": "running"})
        ticks = iter([0, 5, 11])

        seen = list(store.watch(
            IMPORT_JOBS, "job-1", interval=1, timeout=10,
            sleep=lambda _: None, clock=lambda: next(ticks)
        ))

        assert len(seen) == 1
