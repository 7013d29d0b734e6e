"""Tests for durable local stores."""

from pathlib import Path

import pytest

from fieldsync.core.storage import MemoryStore, SQLiteStore, StorageQuotaError


class TestMemoryStore:
    """Tests for MemoryStore."""

    def test_get_missing(self) -> None:
        """Should return None for unknown keys."""
        assert MemoryStore().get_item("nope") is None

    def test_set_get_remove(self) -> None:
        """Should store, overwrite and remove values."""
        store = MemoryStore()
        store.set_item("k", "v1")
        store.set_item("k", "v2")
        assert store.get_item("k") == "v2"
        store.remove_item("k")
        assert store.get_item("k") is None
        store.remove_item("k")  # no error

    def test_usage_counts_two_bytes_per_char(self) -> None:
        """Should count keys and values as UTF-16."""
        store = MemoryStore()
        store.set_item("ab", "cde")
        assert store.usage() == 10

    def test_quota_exceeded(self) -> None:
        """Should raise StorageQuotaError and keep the old value."""
        store = MemoryStore(max_bytes=20)
        store.set_item("k", "small")
        with pytest.raises(StorageQuotaError):
            store.set_item("k", "x" * 50)
        assert store.get_item("k") == "small"

    def test_overwrite_does_not_double_count(self) -> None:
        """Replacing a value should only count the new one."""
        store = MemoryStore(max_bytes=20)
        store.set_item("k", "123456789")
        store.set_item("k", "987654321")
        assert store.get_item("k") == "987654321"


class TestSQLiteStore:
    """Tests for SQLiteStore."""

    def test_survives_reopen(self, tmp_path: Path) -> None:
        """Values should persist across connections."""
        db = tmp_path / "nested" / "queue.db"
        with SQLiteStore(db) as store:
            store.set_item("fieldsync.sync-queue", "[]")
            assert store.path == db

        with SQLiteStore(db) as store:
            assert store.get_item("fieldsync.sync-queue") == "[]"
            assert store.keys() == ["fieldsync.sync-queue"]

    def test_remove(self, tmp_path: Path) -> None:
        """Should remove keys."""
        with SQLiteStore(tmp_path / "q.db") as store:
            store.set_item("a", "1")
            store.remove_item("a")
            assert store.get_item("a") is None

    def test_quota(self, tmp_path: Path) -> None:
        """Writes beyond the size cap should raise StorageQuotaError."""
        with SQLiteStore(tmp_path / "small.db", max_bytes=16 * 1024) as store:
            with pytest.raises(StorageQuotaError):
                store.set_item("big", "x" * 200_000)
