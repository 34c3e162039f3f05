"""
Tests for core/store.py and core/analytics_service.py — persistence and snapshot reads.
"""

import logging
import os
import sys

import pandas as pd
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.analytics_service import SNAPSHOT_KEY, FinancialAnalyticsService
from core.store import (
    JsonFileStore,
    MemoryStore,
    StorageError,
    create_store,
    read_json,
    store_lock,
    write_json,
)

NOW = pd.Timestamp("2026-10-15T12:00:00Z")


class BrokenStore:
    """Store whose backend is unreachable."""

    def get(self, key):
        raise OSError("disk unavailable")

    def set(self, key, value):
        raise OSError("disk unavailable")

    def remove(self, key):
        raise OSError("disk unavailable")


class TestStores:
    def test_memory_store(self):
        store = MemoryStore()
        store.set("k", "v")
        assert store.get("k") == "v"
        store.remove("k")
        assert store.get("k") is None

    def test_json_file_store_persists(self, tmp_path):
        path = tmp_path / "ledger.json"
        JsonFileStore(str(path)).set("k", '{"a": 1}')
        assert JsonFileStore(str(path)).get("k") == '{"a": 1}'

    def test_json_file_store_missing_file(self, tmp_path):
        assert JsonFileStore(str(tmp_path / "none.json")).get("k") is None

    def test_create_store(self, tmp_path):
        assert isinstance(create_store(None), MemoryStore)
        assert isinstance(create_store(str(tmp_path / "s.json")), JsonFileStore)


class TestStoreLock:
    def test_one_lock_per_store(self):
        store = MemoryStore()
        assert store_lock(store) is store_lock(store)
        assert store_lock(store) is not store_lock(MemoryStore())

    def test_lock_is_reentrant(self):
        lock = store_lock(MemoryStore())
        with lock:
            with lock:
                pass


class TestJsonHelpers:
    def test_round_trip(self):
        store = MemoryStore()
        write_json(store, "doc", {"a": [1, 2]})
        assert read_json(store, "doc") == {"a": [1, 2]}

    def test_missing_returns_default(self):
        assert read_json(MemoryStore(), "doc", []) == []

    def test_corrupt_returns_default(self):
        store = MemoryStore({"doc": "{not json"})
        assert read_json(store, "doc", {}) == {}

    def test_failing_store_raises(self):
        with pytest.raises(StorageError):
            read_json(BrokenStore(), "doc")
        with pytest.raises(StorageError):
            write_json(BrokenStore(), "doc", {})


RAW_PAYMENTS = [
    {"studentId": "S1", "className": "JSS1", "status": "paid", "amount": 100,
     "updatedAt": "2026-10-01T00:00:00Z"},
    {"studentId": "S2", "className": "JSS2", "status": "pending", "amount": 40,
     "updatedAt": "2026-10-02T00:00:00Z"},
]


class TestFinancialAnalyticsService:
    @pytest.fixture
    def service(self):
        return FinancialAnalyticsService(MemoryStore())

    def test_no_snapshot_yet(self, service):
        assert service.get_snapshot() is None
        assert service.get_fee_collection("all") == []
        assert service.get_defaulters() == []

    def test_sync_persists(self, service):
        service.sync_financial_analytics(RAW_PAYMENTS, NOW)
        snapshot = service.get_snapshot()
        assert snapshot.generated_at == "2026-10-15T12:00:00.000Z"
        assert [d.id for d in service.get_defaulters()] == ["S2"]

    def test_unknown_period_falls_back(self, service):
        service.sync_financial_analytics(RAW_PAYMENTS, NOW)
        assert service.get_period("bogus") == service.get_period("current-term")

    def test_class_filter(self, service):
        service.sync_financial_analytics(RAW_PAYMENTS, NOW)
        assert [e.class_label for e in service.get_class_collection("all", "JSS2")] == ["JSS2"]
        assert len(service.get_class_collection("all")) == 2

    def test_malformed_snapshot_ignored(self):
        service = FinancialAnalyticsService(MemoryStore({SNAPSHOT_KEY: '{"periods": 5}'}))
        assert service.get_snapshot() is None

    def test_clear(self, service):
        service.sync_financial_analytics(RAW_PAYMENTS, NOW)
        service.clear_snapshot()
        assert service.get_snapshot() is None

    def test_sync_failure_logged_and_raised(self, caplog):
        service = FinancialAnalyticsService(BrokenStore())
        with caplog.at_level(logging.ERROR):
            with pytest.raises(StorageError):
                service.sync_financial_analytics(RAW_PAYMENTS, NOW)
        assert "Error syncing financial analytics" in caplog.text
