"""Durable queues for pending record operations and uploads.

This module provides:
- PersistentQueue: Ordered, write-through persisted list of queued items
- OperationQueue: Durable Operation Queue of SyncOperation
- UploadQueue: Durable queue of UploadItem for the asset pipeline

Persistence:
    The whole list is serialized to JSON and written to the LocalStore
    after every mutation (write-through). A crash between enqueue and the
    next drain therefore loses nothing.

    - Order: items keep their enqueue order (FIFO) for their whole life
    - Ownership: the queue is the only writer of its storage key
    - Corruption: an unreadable persisted value loads as an empty queue
      and is logged, never raised. The local application state remains
      the cache-of-record for the lost writes.
    - Capacity: if the store raises StorageQuotaError the in-memory change
      is rolled back and the error propagates to the caller.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from fieldsync.core.storage import StorageQuotaError
from fieldsync.sync.types import SyncOperation, UploadItem

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from fieldsync.core.storage import LocalStore
    from fieldsync.status import StatusNotifier

logger = logging.getLogger(__name__)

T = TypeVar("T", SyncOperation, UploadItem)


class PersistentQueue(Generic[T]):
    """Ordered queue persisted to a LocalStore after every change.

    Items are replaced rather than mutated in place, so a failed persist
    can restore the previous list exactly.

    Attributes:
        key: Storage key of the serialized list
    """

    item_type: type[T]

    def __init__(self, store: LocalStore, key: str, notifier: StatusNotifier) -> None:
        """Initialize the queue (call load() to read persisted items).

        Args:
            store: Durable store to persist to
            key: Storage key of the serialized list
            notifier: Status notifier updated with queue counters
        """
        self._store = store
        self._key = key
        self._notifier = notifier
        self._lock = threading.RLock()
        self._items: list[T] = []

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> int:
        """Load persisted items, replacing the in-memory list.

        Returns:
            Number of items loaded
        """
        raw = self._store.get_item(self._key)
        items: list[T] = []

        if raw:
            try:
                data = json.loads(raw)
                if not isinstance(data, list):
                    raise ValueError(f"expected a list, got {type(data).__name__}")
            except ValueError as e:
                logger.error("Persisted queue %s is unreadable, starting empty: %s", self._key, e)
                data = []

            for entry in data:
                try:
                    items.append(self.item_type.from_dict(entry))
                except (KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning("Dropping malformed entry in %s: %s", self._key, e)

        with self._lock:
            self._items = items

        if items:
            logger.info("Loaded %d pending items from %s", len(items), self._key)
        self.publish_counts()
        return len(items)

    def enqueue(self, item: T) -> str:
        """Append an item and persist.

        Returns:
            The item id

        Raises:
            StorageQuotaError: If the store cannot hold the new list
        """
        with self._lock:
            self._commit([*self._items, item])
            size = len(self._items)

        logger.debug("Queued %r (queue size: %d)", item, size)
        self.publish_counts()
        return item.id

    def remove(self, item_id: str) -> T | None:
        """Remove an item by id and persist.

        Returns:
            The removed item, or None if not found
        """
        with self._lock:
            item = self._find(item_id)
            if item is None:
                return None
            self._commit([i for i in self._items if i.id != item_id])

        logger.debug("Removed %r from %s", item, self._key)
        self.publish_counts()
        return item

    def mark_failed_attempt(self, item_id: str, error: str) -> T | None:
        """Increment the attempt counter of an item and record the error.

        Returns:
            The updated item, or None if not found
        """
        return self._replace(
            item_id,
            lambda item: dataclasses.replace(
                item, attempts=item.attempts + 1, last_error=error[:1000]
            ),
        )

    def get(self, item_id: str) -> T | None:
        """Get an item by id without removing it."""
        with self._lock:
            return self._find(item_id)

    def list_pending(self) -> list[T]:
        """Snapshot of all queued items in enqueue order."""
        with self._lock:
            return list(self._items)

    def clear(self) -> int:
        """Remove all items.

        Returns:
            Number of items removed
        """
        with self._lock:
            count = len(self._items)
            self._commit([])

        logger.info("Cleared %d items from %s", count, self._key)
        self.publish_counts()
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.list_pending())

    def __bool__(self) -> bool:
        with self._lock:
            return bool(self._items)

    def _find(self, item_id: str) -> T | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def _replace(self, item_id: str, change: Callable[[T], T]) -> T | None:
        with self._lock:
            item = self._find(item_id)
            if item is None:
                return None
            updated = change(item)
            self._commit([updated if i.id == item_id else i for i in self._items])

        self.publish_counts()
        return updated

    def _commit(self, items: list[T]) -> None:
        """Swap in a new list and persist it, restoring the old one on failure."""
        previous = self._items
        self._items = items
        try:
            self._store.set_item(
                self._key, json.dumps([i.to_dict() for i in items], ensure_ascii=False)
            )
        except StorageQuotaError:
            self._items = previous
            logger.error("Local store full, could not persist %s", self._key)
            raise

    def publish_counts(self) -> None:
        """Push the queue counters to the status notifier."""
        self._notifier.update(**self._counters())

    def _counters(self) -> dict[str, Any]:
        raise NotImplementedError


class OperationQueue(PersistentQueue[SyncOperation]):
    """Durable Operation Queue for record mutations.

    Terminal operations stay in the queue for inspection; they are skipped
    by drains until retry_all() resets them.
    """

    item_type = SyncOperation

    def dequeue_success(self, operation_id: str) -> SyncOperation | None:
        """Remove an operation that was applied remotely."""
        return self.remove(operation_id)

    def mark_terminal(self, operation_id: str, error: str) -> SyncOperation | None:
        """Flag an operation as permanently failed without removing it."""
        failed_at = datetime.now(UTC).isoformat()
        return self._replace(
            operation_id,
            lambda op: dataclasses.replace(op, failed_at=failed_at, last_error=error[:1000]),
        )

    def reset_attempts(self) -> int:
        """Zero every attempt counter and clear terminal markers.

        Returns:
            Number of operations reset
        """
        with self._lock:
            self._commit(
                [
                    dataclasses.replace(op, attempts=0, failed_at=None, last_error=None)
                    for op in self._items
                ]
            )
            count = len(self._items)

        self.publish_counts()
        return count

    def terminal_count(self) -> int:
        with self._lock:
            return sum(1 for op in self._items if op.is_terminal)

    def _counters(self) -> dict[str, Any]:
        with self._lock:
            return {
                "pending_count": len(self._items),
                "failed_count": sum(1 for op in self._items if op.is_terminal),
            }


class UploadQueue(PersistentQueue[UploadItem]):
    """Durable queue of binary assets waiting for upload."""

    item_type = UploadItem

    def _counters(self) -> dict[str, Any]:
        with self._lock:
            return {"pending_uploads": len(self._items)}
