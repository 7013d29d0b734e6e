"""Durable local key/value stores.

This module provides:
- LocalStore: Protocol for the string-keyed durable store the queues persist to
- MemoryStore: In-process store with an optional capacity limit
- SQLiteStore: SQLite-backed store that survives process restart
- StorageQuotaError: Raised when a write exceeds the store capacity

The stores are deliberately dumb: values are opaque strings and capacity
failures are raised to the caller, never retried or cleaned up here.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class StorageQuotaError(Exception):
    """The durable store has no room for the value being written."""


class LocalStore(Protocol):
    """String-keyed durable store."""

    def get_item(self, key: str) -> str | None:
        """Return the value stored under key, or None."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """Store value under key. May raise StorageQuotaError."""
        ...

    def remove_item(self, key: str) -> None:
        """Remove key if present."""
        ...


class MemoryStore:
    """In-memory LocalStore.

    Capacity is counted like browser storage: two bytes per character of
    every key and value.

    Attributes:
        max_bytes: Capacity in bytes (None = unlimited)
    """

    def __init__(self, max_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._max_bytes = max_bytes
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            if self._max_bytes is not None:
                projected = self._usage_without(key) + (len(key) + len(value)) * 2
                if projected > self._max_bytes:
                    raise StorageQuotaError(
                        f"Storing {key!r} needs {projected} bytes, "
                        f"capacity is {self._max_bytes}"
                    )
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def usage(self) -> int:
        """Get current usage in bytes."""
        with self._lock:
            return self._usage_without(None)

    def _usage_without(self, skip_key: str | None) -> int:
        return sum(
            (len(k) + len(v)) * 2 for k, v in self._items.items() if k != skip_key
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class SQLiteStore:
    """SQLite-backed LocalStore.

    Every write commits immediately (autocommit mode) so a value returned
    from set_item is on disk.
    """

    def __init__(self, db_path: Path, max_bytes: int | None = None) -> None:
        """Open or create the store.

        Args:
            db_path: Path to SQLite database file.
            max_bytes: Optional size cap; writes beyond it raise StorageQuotaError.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        if max_bytes is not None:
            page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
            self._conn.execute(f"PRAGMA max_page_count = {max(1, max_bytes // page_size)}")

        logger.debug("Opened local store at %s", self._db_path)

    @property
    def path(self) -> Path:
        """Location of the database file."""
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SQLiteStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                    (key, value),
                )
            except sqlite3.OperationalError as e:
                if _is_full_error(e):
                    raise StorageQuotaError(f"Local store is full: {e}") from e
                raise

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        """List all stored keys."""
        with self._lock:
            rows = self._conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row[0] for row in rows]


def _is_full_error(error: sqlite3.Error) -> bool:
    if getattr(error, "sqlite_errorname", None) == "SQLITE_FULL":
        return True
    return "full" in str(error).lower()
