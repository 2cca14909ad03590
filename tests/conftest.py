"""
Shared test fixtures.

The Supabase mock keeps rows per table for the duration of a test and
applies eq / neq / order / range / limit, so services can be exercised
end to end without a database.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from cryptography.fernet import Fernet

# Settings are read once at import; these must be set first
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("SHOPIFY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ["CACHE_BACKEND"] = "memory"

import pytest
from copy import deepcopy
from unittest.mock import patch
from datetime import datetime, timezone
from typing import Any, Callable, Generator, Optional
from uuid import uuid4

from services.cache_service import MemoryCache
from tests.fakes import FakeDispatcher, FakeNotifier, FakeSheets

SERVICE_MODULES = [
    "services.sync_run_service",
    "services.field_mapping_service",
    "services.connection_service",
    "services.shop_service",
    "services.notification_service",
]


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Chainable query against one table's rows."""

    def __init__(self, client: "MockSupabaseClient", table: str, op: str, payload: Any = None, count: Optional[str] = None):
        self._client = client
        self._table = table
        self._op = op
        self._payload = payload
        self._count = count
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None
        self._is_single = False

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def single(self):
        self._is_single = True
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matches(self, row: dict) -> bool:
        return all(check(row) for check in self._filters)

    def _sorted(self, rows: list[dict]) -> list[dict]:
        for column, desc in reversed(self._order):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            rows = sorted(present, key=lambda r: r[column], reverse=desc) + missing
        return rows

    def execute(self) -> MockSupabaseResponse:
        if self._table in self._client.failing_tables:
            raise Exception(f"connection to {self._table} lost")

        rows = self._client.rows(self._table)

        if self._op == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in items:
                row = deepcopy(item)
                row.setdefault("id", str(uuid4()))
                row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
                rows.append(row)
                inserted.append(deepcopy(row))
            return MockSupabaseResponse(data=inserted)

        if self._op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(deepcopy(self._payload))
                    updated.append(deepcopy(row))
            return MockSupabaseResponse(data=updated)

        if self._op == "delete":
            removed = [row for row in rows if self._matches(row)]
            rows[:] = [row for row in rows if not self._matches(row)]
            return MockSupabaseResponse(data=deepcopy(removed))

        matched = self._sorted([row for row in rows if self._matches(row)])
        total = len(matched)
        if self._range is not None:
            start, end = self._range
            matched = matched[start:end + 1]
        if self._limit is not None:
            matched = matched[:self._limit]

        if self._is_single:
            data = deepcopy(matched[0]) if matched else None
            return MockSupabaseResponse(data=data, count=1 if data else 0)
        return MockSupabaseResponse(data=deepcopy(matched), count=total)


class MockSupabaseTable:
    """Entry point for queries on one table."""

    def __init__(self, client: "MockSupabaseClient", name: str):
        self._client = client
        self._name = name

    def select(self, *args, count: Optional[str] = None, **kwargs):
        return MockSupabaseQuery(self._client, self._name, "select", count=count)

    def insert(self, data):
        return MockSupabaseQuery(self._client, self._name, "insert", data)

    def update(self, data):
        return MockSupabaseQuery(self._client, self._name, "update", data)

    def delete(self):
        return MockSupabaseQuery(self._client, self._name, "delete")


class MockSupabaseClient:
    """In-memory Supabase client."""

    def __init__(self):
        self._tables: dict[str, list[dict]] = {}
        self.failing_tables: set[str] = set()

    def set_table_data(self, table_name: str, data: list):
        """Seed rows for a table."""
        self._tables[table_name] = deepcopy(data)

    def rows(self, table_name: str) -> list[dict]:
        return self._tables.setdefault(table_name, [])

    def fail_table(self, table_name: str):
        """Make every query on a table raise."""
        self.failing_tables.add(table_name)

    def table(self, name: str) -> MockSupabaseTable:
        return MockSupabaseTable(self, name)


# ===================
# FIXTURES
# ===================

@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    """Fresh service singletons and cache per test."""
    import services.sync_run_service as sync_run_service
    import services.field_mapping_service as field_mapping_service
    import services.connection_service as connection_service
    import services.shop_service as shop_service
    import services.notification_service as notification_service
    from services.cache_service import get_cache

    monkeypatch.setattr(sync_run_service, "_sync_run_service", None)
    monkeypatch.setattr(field_mapping_service, "_field_mapping_service", None)
    monkeypatch.setattr(connection_service, "_connection_service", None)
    monkeypatch.setattr(shop_service, "_shop_service", None)
    monkeypatch.setattr(notification_service, "_notification_service", None)
    get_cache.cache_clear()
    yield
    get_cache.cache_clear()


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("sync_runs", [
                {"id": "run-1", "shop_id": "shop-1", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            mock_supabase.set_table_data("sync_runs", [...])
            # Now any service using get_supabase_client() gets the mock
    """
    patches = [patch("config.database.get_supabase_client", return_value=mock_supabase)]
    patches += [patch(f"{module}.get_supabase_client", return_value=mock_supabase) for module in SERVICE_MODULES]
    for p in patches:
        p.start()
    try:
        yield mock_supabase
    finally:
        for p in reversed(patches):
            p.stop()


@pytest.fixture
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def fake_sheets() -> FakeSheets:
    return FakeSheets()


@pytest.fixture
def fake_dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def make_orchestrator(fake_sheets, memory_cache, fake_dispatcher, fake_notifier):
    """
    Build a SyncOrchestrator for shop-1 wired to the fakes.

    Runs and connections still go through the (mocked) database services.

    Usage:
        def test_something(mock_db, make_orchestrator):
            orchestrator = make_orchestrator(FakeCatalog(records))
    """
    from services.sync_orchestrator import SyncOrchestrator
    from services.transformer_service import DataTransformer
    from tests.factories import DEFAULT_MAPPINGS, FIXED_NOW
    from tests.fakes import FakeCatalog

    def _make(catalog=None, mappings=None):
        return SyncOrchestrator(
            "shop-1",
            catalog=catalog or FakeCatalog(),
            sheets_factory=lambda connection: fake_sheets,
            transformer=DataTransformer(DEFAULT_MAPPINGS if mappings is None else mappings, currency="USD"),
            cache=memory_cache,
            dispatcher=fake_dispatcher,
            notifier=fake_notifier,
            clock=lambda: FIXED_NOW,
        )
    return _make


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(mock_db):
    """
    Create FastAPI test client with mocked database.

    The lifespan handler is not run.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase):
            mock_supabase.set_table_data("sync_runs", [...])
            response = test_client_with_mock_db.get("/api/sync/runs", headers={"X-Shop-Id": "shop-1"})
    """
    from fastapi.testclient import TestClient
    from main import app

    yield TestClient(app)
