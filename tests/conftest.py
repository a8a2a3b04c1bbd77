"""
Shared test fixtures.

The Supabase client is replaced by an in-memory mock that keeps rows per
table, so services run their real queries against it.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("VIPP_ENVIRONMENT", "test")
os.environ.setdefault("NOTIFY_CLIENTS", "false")

import copy
import uuid
import pytest
from unittest.mock import patch
from datetime import datetime
from typing import Generator

# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """
    Chainable query over one in-memory table.

    Filters, ordering and limits are applied on execute(), like
    PostgREST does server side.
    """

    def __init__(self, rows: list, operation: str = "select", payload=None):
        self._rows = rows
        self._operation = operation
        self._payload = payload
        self._filters = []
        self._order = None
        self._limit = None

    def select(self, *args, **kwargs):
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def ov(self, column, values):
        values = set(values)
        self._filters.append(lambda row: bool(values & set(row.get(column) or [])))
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matching(self) -> list:
        return [row for row in self._rows if all(f(row) for f in self._filters)]

    def execute(self) -> MockSupabaseResponse:
        if self._operation == "select":
            matched = self._matching()
            if self._order:
                column, desc = self._order
                matched = sorted(matched, key=lambda r: str(r.get(column) or ""), reverse=desc)
            count = len(matched)
            if self._limit is not None:
                matched = matched[:self._limit]
            return MockSupabaseResponse(copy.deepcopy(matched), count)

        if self._operation == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            stored = []
            for item in items:
                row = copy.deepcopy(item)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", datetime.utcnow().isoformat() + "Z")
                self._rows.append(row)
                stored.append(copy.deepcopy(row))
            return MockSupabaseResponse(stored)

        if self._operation == "upsert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            stored = []
            for item in items:
                existing = next((r for r in self._rows if r.get("id") == item.get("id")), None)
                if existing is None:
                    existing = {}
                    self._rows.append(existing)
                existing.update(copy.deepcopy(item))
                stored.append(copy.deepcopy(existing))
            return MockSupabaseResponse(stored)

        if self._operation == "update":
            matched = self._matching()
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return MockSupabaseResponse(copy.deepcopy(matched))

        if self._operation == "delete":
            matched = self._matching()
            for row in matched:
                self._rows.remove(row)
            return MockSupabaseResponse(copy.deepcopy(matched))

        raise ValueError(f"Unknown operation {self._operation}")


class MockSupabaseTable:
    """Mock Supabase table backed by a shared row list."""

    def __init__(self, rows: list):
        self._rows = rows

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self._rows)

    def insert(self, data):
        return MockSupabaseQuery(self._rows, "insert", data)

    def upsert(self, data):
        return MockSupabaseQuery(self._rows, "upsert", data)

    def update(self, data):
        return MockSupabaseQuery(self._rows, "update", data)

    def delete(self):
        return MockSupabaseQuery(self._rows, "delete")


class MockRpcCall:
    def __init__(self, client, name: str, params: dict):
        self._client = client
        self._name = name
        self._params = params

    def execute(self) -> MockSupabaseResponse:
        if self._name != "increment_counters":
            raise ValueError(f"Unknown function {self._name}")
        rows = self._client.rows(self._params["p_table"])
        row = next((r for r in rows if r.get("id") == self._params["p_id"]), None)
        if row is None:
            return MockSupabaseResponse([])
        for column, amount in self._params["p_counters"].items():
            row[column] = (row.get(column) or 0) + amount
        row["updated_at"] = datetime.utcnow().isoformat() + "Z"
        return MockSupabaseResponse([copy.deepcopy(row)])


class MockSupabaseClient:
    """Mock Supabase client holding every table in memory."""

    def __init__(self):
        self._tables: dict[str, list] = {}
        self.rpc_calls: list[tuple[str, dict]] = []

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Seed a table (count is accepted for compatibility and ignored)."""
        self._tables[table_name] = copy.deepcopy(data)

    def rows(self, table_name: str) -> list:
        """Live row list of a table, for assertions."""
        return self._tables.setdefault(table_name, [])

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self.rows(name))

    def rpc(self, name: str, params: dict) -> MockRpcCall:
        self.rpc_calls.append((name, params))
        return MockRpcCall(self, name, params)


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("import_jobs", [
                {"id": "job-1", "status": "running", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def store(mock_supabase):
    """DocumentStore over the in-memory client."""
    from services.document_store import DocumentStore
    return DocumentStore(client=mock_supabase)


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    calls = []

    def sleep(seconds):
        calls.append(seconds)

    sleep.calls = calls
    return sleep


@pytest.fixture
def reset_singletons(monkeypatch):
    """Drop every cached service so patched clients are picked up."""
    import services.document_store as document_store
    import services.import_job_service as import_job_service
    import services.import_lock_service as import_lock_service
    import services.import_queue_service as import_queue_service
    import services.mapping_template_service as mapping_template_service
    import services.order_merge_service as order_merge_service
    import services.label_service as label_service
    import services.notification_service as notification_service
    import integrations.vipp as vipp

    monkeypatch.setattr(document_store, "_store", None)
    monkeypatch.setattr(import_job_service, "_service", None)
    monkeypatch.setattr(import_lock_service, "_service", None)
    monkeypatch.setattr(import_queue_service, "_service", None)
    monkeypatch.setattr(mapping_template_service, "_service", None)
    monkeypatch.setattr(order_merge_service, "_service", None)
    monkeypatch.setattr(label_service, "_service", None)
    monkeypatch.setattr(notification_service, "_service", None)
    monkeypatch.setattr(vipp, "_client", None)


@pytest.fixture
def mock_db(mock_supabase, reset_singletons) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            mock_supabase.set_table_data("mapping_templates", [...])
            # Now any code using get_supabase_client() gets the mock
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.document_store.get_supabase_client", return_value=mock_supabase):
            yield mock_supabase


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(mock_db):
    """
    Create FastAPI test client with mocked database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase):
            mock_supabase.set_table_data("import_jobs", [...])
            response = test_client_with_mock_db.get("/api/import-csv/jobs")
    """
    from fastapi.testclient import TestClient
    from main import app

    yield TestClient(app)
