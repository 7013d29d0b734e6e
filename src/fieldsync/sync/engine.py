"""Record sync engine.

This module provides:
- RecordSyncEngine: Record-level mutation API over the operation queue
- generate_device_id: Identifier stamped on every write of this device

Control flow:
    save_record() ─► connected? ─yes─► SyncExecutor.apply() ─ok─► WriteResult(success)
                        │                      │
                        no                   failed
                        ▼                      ▼
                 OperationQueue.enqueue() ◄────┘ ─► WriteResult(queued)

    process_queue() drains the queue in FIFO order through SyncExecutor.execute().
    Failed operations schedule a timer that runs process_queue() again.

Ordering:
    Drains never interleave (in-flight flag under a lock). Within a drain,
    an operation is skipped when an earlier operation on the same address
    failed or is terminal, so two writes to one record never land out of
    order. An immediate write to an address that still has queued
    operations is queued behind them instead.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import TYPE_CHECKING, Any

from fieldsync.core.config import EngineConfig
from fieldsync.core.storage import StorageQuotaError
from fieldsync.core.types import LAST_MODIFIED_FIELD, FailureKind, OperationKind, ResourceCategory
from fieldsync.status import StatusNotifier
from fieldsync.sync.conflict import ConflictAction, ConflictResolver
from fieldsync.sync.executor import SyncExecutor
from fieldsync.sync.queue import OperationQueue
from fieldsync.sync.retry import RetryScheduler, classify_failure
from fieldsync.sync.types import (
    BatchSyncResult,
    DrainResult,
    ExecutionResult,
    SyncError,
    SyncEventKind,
    SyncOperation,
    WriteResult,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from fieldsync.core.storage import LocalStore
    from fieldsync.remote import ErrorCallback, RemoteStore, Subscription, ValueCallback
    from fieldsync.status import SyncStatus
    from fieldsync.sync.conflict import ConflictPolicy
    from fieldsync.sync.retry import TimerFactory

logger = logging.getLogger(__name__)


def generate_device_id() -> str:
    """Generate a new device identifier (device-<epoch ms>-<random hex>)."""
    return f"device-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _base_stamp_of(record: dict[str, Any], base_stamp: int | None) -> int | None:
    if base_stamp is not None:
        return base_stamp
    value = record.get(LAST_MODIFIED_FIELD)
    return int(value) if isinstance(value, (int, float)) else None


class RecordSyncEngine:
    """Offline-tolerant record synchronization.

    Every mutation is tried immediately when connected; on failure or when
    offline it is queued durably and retried later. Callers always get a
    WriteResult back, never an exception from background retries. The one
    exception that does reach callers is StorageQuotaError when the local
    store has no room for the queued operation.

    Usage:
        engine = RecordSyncEngine(remote, SQLiteStore(path))
        engine.load()
        engine.set_connected(True)
        engine.save_record("forms", "form-42", {"status": "submitted"})
        engine.on_status_change(lambda s: print(s.pending_count))
    """

    def __init__(
        self,
        remote: RemoteStore,
        store: LocalStore,
        config: EngineConfig | None = None,
        notifier: StatusNotifier | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            remote: Remote record store.
            store: Durable local store for the queue and device id.
            config: Engine configuration.
            notifier: Status notifier (a new one if omitted).
            timer_factory: Factory of retry timers (daemon threads if omitted).
        """
        self._remote = remote
        self._store = store
        self._config = config or EngineConfig()
        self._notifier = notifier or StatusNotifier()
        self._device_id = self._config.device_id or self._load_device_id()

        self._queue = OperationQueue(store, self._config.queue_key, self._notifier)
        self._scheduler = RetryScheduler(
            self._config.retry_delays, self._config.max_retries, timer_factory
        )
        self._resolver = ConflictResolver(self._notifier, self._device_id)
        self._executor = SyncExecutor(
            remote,
            self._queue,
            self._scheduler,
            self._resolver,
            self._notifier,
            drain=self.process_queue,
        )

        self._lock = threading.Lock()
        self._draining = False
        self._rerun = False

    # === Properties ===

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def notifier(self) -> StatusNotifier:
        return self._notifier

    @property
    def queue(self) -> OperationQueue:
        return self._queue

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    @property
    def connected(self) -> bool:
        return self._notifier.status.connected

    # === Lifecycle ===

    def load(self) -> int:
        """Load persisted operations.

        Returns:
            Number of pending operations.
        """
        count = self._queue.load()
        logger.info("Record engine ready for %s (%d pending)", self._device_id, count)
        return count

    def set_connected(self, connected: bool) -> None:
        """Record a connectivity transition (does not drain)."""
        if connected != self.connected:
            logger.info("Remote store %s", "reachable" if connected else "unreachable")
        self._notifier.update(connected=connected)

    def session_restored(self) -> DrainResult:
        """Clear the authentication flag after re-authentication and drain."""
        self._notifier.update(auth_required=False)
        return self.process_queue()

    def close(self) -> None:
        """Cancel pending retry timers. The queue stays persisted."""
        self._scheduler.cancel_all()

    def _load_device_id(self) -> str:
        device_id = self._store.get_item(self._config.device_key)
        if not device_id:
            device_id = generate_device_id()
            self._store.set_item(self._config.device_key, device_id)
            logger.info("Generated device id %s", device_id)
        return device_id

    # === Record mutations ===

    def save_record(
        self,
        category: ResourceCategory | str,
        record_id: str,
        record: dict[str, Any],
        base_stamp: int | None = None,
    ) -> WriteResult:
        """Merge fields into a remote record.

        Args:
            category: Resource category.
            record_id: Record identifier.
            record: Fields to merge.
            base_stamp: Remote ``_lastModified`` the edit was based on
                (taken from the record itself if omitted).

        Raises:
            SyncError: If the record id is invalid.
            StorageQuotaError: If the operation had to be queued and the
                local store is full.
        """
        return self._submit(
            self._build(
                category, OperationKind.MERGE_UPDATE, record_id, record,
                _base_stamp_of(record, base_stamp),
            )
        )

    def create_record(
        self,
        category: ResourceCategory | str,
        record: dict[str, Any],
        record_id: str | None = None,
    ) -> WriteResult:
        """Create a record; the id is taken from the record or generated."""
        record_id = record_id or record.get("id") or uuid.uuid4().hex
        return self._submit(self._build(category, OperationKind.CREATE, str(record_id), record))

    def replace_record(
        self,
        category: ResourceCategory | str,
        record_id: str,
        record: dict[str, Any],
        base_stamp: int | None = None,
    ) -> WriteResult:
        """Replace a remote record entirely."""
        return self._submit(
            self._build(
                category, OperationKind.REPLACE, record_id, record,
                _base_stamp_of(record, base_stamp),
            )
        )

    def delete_record(self, category: ResourceCategory | str, record_id: str) -> WriteResult:
        """Delete a remote record."""
        return self._submit(self._build(category, OperationKind.DELETE, record_id, None))

    def sync_records(
        self,
        category: ResourceCategory | str,
        records: dict[str, dict[str, Any]] | Iterable[dict[str, Any]],
    ) -> BatchSyncResult:
        """Push several local records, checking each one for conflicts.

        Args:
            category: Resource category.
            records: Mapping of id to record, or records carrying an "id".

        A conflict kept as the remote version counts only in ``conflicts``;
        one resolved with the local or a merged record counts as synced.

        Returns:
            Counts of synced, conflicting, failed and queued records.
        """
        category = operation_category(category)
        if isinstance(records, dict):
            items = list(records.items())
        else:
            items = [(str(r["id"]), r) for r in records]

        result = BatchSyncResult()
        for record_id, record in items:
            operation = self._build(
                category, OperationKind.REPLACE, record_id, record,
                _base_stamp_of(record, None),
            )
            if not self.connected or self._has_queued(operation.address):
                self._enqueue(operation)
                result.queued += 1
                continue

            try:
                resolution = self._executor.apply(operation)
            except Exception as e:
                logger.warning("Sync of %s failed, queuing: %s", operation.address, e)
                self._queue_failed(operation, e)
                result.errors += 1
                result.queued += 1
                continue

            if resolution == ConflictAction.KEEP_REMOTE:
                result.conflicts += 1
            else:
                result.synced += 1
            self._notifier.mark_drained()

        logger.info(
            "Synced %d %s records (%d conflicts, %d errors)",
            result.synced, category.value, result.conflicts, result.errors,
        )
        return result

    def queue_operation(
        self,
        category: ResourceCategory | str,
        kind: OperationKind | str,
        record_id: str,
        payload: dict[str, Any] | None = None,
        base_stamp: int | None = None,
    ) -> str:
        """Queue an operation without trying it immediately.

        Returns:
            The operation id.
        """
        operation = self._build(category, OperationKind(kind), record_id, payload, base_stamp)
        return self._enqueue(operation)

    # === Queue ===

    def process_queue(self) -> DrainResult:
        """Drain the queue once, in FIFO order.

        Never raises. Returns immediately when offline or when another
        drain is already running.
        """
        if not self.connected:
            return DrainResult(pending=len(self._queue), offline=True)

        with self._lock:
            if self._draining:
                # Run another pass once the current drain finishes
                self._rerun = True
                return DrainResult(pending=len(self._queue), already_running=True)
            self._draining = True
            self._rerun = False

        result = DrainResult()
        self._notifier.update(syncing=True)
        try:
            while True:
                self._drain(result)
                with self._lock:
                    if not self._rerun or result.auth_required:
                        break
                    self._rerun = False
        except StorageQuotaError as e:
            logger.error("Drain stopped, local store is full: %s", e)
        except Exception:
            logger.exception("Drain failed")
        finally:
            with self._lock:
                self._draining = False
            self._notifier.update(syncing=False)

        result.pending = len(self._queue)
        if result.processed or result.failed:
            logger.info(
                "Drain finished: %d synced, %d failed, %d skipped, %d pending",
                result.processed, result.failed, result.skipped, result.pending,
            )
        return result

    def _drain(self, result: DrainResult) -> None:
        blocked: set[str] = set()
        seen: set[str] = set()

        # Keep passing over the queue while operations arrive during the drain
        while True:
            batch = [op for op in self._queue.list_pending() if op.id not in seen]
            if not batch:
                return

            for operation in batch:
                seen.add(operation.id)
                if not self.connected:
                    logger.info("Went offline during drain")
                    return
                if operation.is_terminal or operation.address in blocked:
                    blocked.add(operation.address)
                    result.skipped += 1
                    continue
                if self._queue.get(operation.id) is None:
                    continue

                outcome = self._executor.execute(operation)
                if outcome == ExecutionResult.SUCCESS:
                    result.processed += 1
                elif outcome == ExecutionResult.AUTH_REQUIRED:
                    result.auth_required = True
                    return
                else:
                    result.failed += 1
                    blocked.add(operation.address)

    def retry_all(self) -> DrainResult:
        """Reset every operation (terminal ones included) and drain."""
        self._scheduler.cancel_all()
        count = self._queue.reset_attempts()
        logger.info("Retrying %d queued operations", count)
        return self.process_queue()

    def clear_queue(self) -> int:
        """Drop every queued operation and cancel pending retries.

        Returns:
            Number of operations dropped.
        """
        self._scheduler.cancel_all()
        return self._queue.clear()

    def get_pending_count(self) -> int:
        return len(self._queue)

    def get_pending_queue(self) -> list[SyncOperation]:
        return self._queue.list_pending()

    # === Observers ===

    def get_status(self) -> SyncStatus:
        return self._notifier.snapshot()

    def on_status_change(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        return self._notifier.on_status_change(callback)

    def on_sync_event(
        self, callback: Callable[[SyncEventKind, dict[str, Any]], None]
    ) -> Callable[[], None]:
        return self._notifier.on_sync_event(callback)

    def on_conflict(self, policy: ConflictPolicy) -> Callable[[], None]:
        """Register the conflict resolution policy (default: keep remote)."""
        return self._resolver.set_policy(policy)

    def watch_category(
        self,
        category: ResourceCategory | str,
        callback: ValueCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Subscribe to every record of a category."""
        category = operation_category(category)
        address = f"{self._config.root_path}/{category.value}".lstrip("/")
        return self._remote.reference(address).listen(callback, on_error)

    def watch_record(
        self,
        category: ResourceCategory | str,
        record_id: str,
        callback: ValueCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Subscribe to one record."""
        address = self._address(operation_category(category), record_id)
        return self._remote.reference(address).listen(callback, on_error)

    # === Internals ===

    def _address(self, category: ResourceCategory, record_id: str) -> str:
        if not record_id or "/" in record_id:
            raise SyncError(f"Invalid record id: {record_id!r}")
        return self._config.address_for(category.value, record_id)

    def _build(
        self,
        category: ResourceCategory | str,
        kind: OperationKind,
        record_id: str,
        payload: dict[str, Any] | None,
        base_stamp: int | None = None,
    ) -> SyncOperation:
        category = operation_category(category)
        return SyncOperation.create(
            category=category,
            kind=kind,
            address=self._address(category, record_id),
            payload=payload,
            device_id=self._device_id,
            base_stamp=base_stamp,
        )

    def _enqueue(self, operation: SyncOperation) -> str:
        operation_id = self._queue.enqueue(operation)
        self._notifier.emit(
            SyncEventKind.QUEUED,
            operation_id=operation_id,
            address=operation.address,
            kind=operation.kind.value,
        )
        return operation_id

    def _submit(self, operation: SyncOperation) -> WriteResult:
        record_id = operation.record_id

        if not self.connected:
            self._enqueue(operation)
            logger.debug("Offline, queued %r", operation)
            return WriteResult(False, True, record_id, operation.id)

        if self._has_queued(operation.address):
            # Earlier writes to this record are still queued
            self._enqueue(operation)
            self.process_queue()
            if self._queue.get(operation.id) is None:
                return WriteResult(True, False, record_id, operation.id)
            return WriteResult(False, True, record_id, operation.id)

        try:
            resolution = self._executor.apply(operation)
        except Exception as e:
            logger.warning("Write to %s failed, queuing: %s", operation.address, e)
            self._queue_failed(operation, e)
            return WriteResult(False, True, record_id, operation.id, str(e))

        self._notifier.mark_drained()
        self._notifier.emit(
            SyncEventKind.SYNCED,
            operation_id=operation.id,
            address=operation.address,
            kind=operation.kind.value,
            resolution=resolution.value if resolution else None,
        )
        return WriteResult(True, False, record_id, operation.id)

    def _has_queued(self, address: str) -> bool:
        return any(op.address == address for op in self._queue.list_pending())

    def _queue_failed(self, operation: SyncOperation, error: Exception) -> None:
        """Queue an operation whose immediate attempt failed.

        Retryable failures count as the first attempt and schedule a drain;
        authentication failures leave the operation waiting for re-auth.
        """
        self._enqueue(operation)

        if classify_failure(error) == FailureKind.TERMINAL_SESSION:
            self._notifier.update(auth_required=True)
            self._notifier.emit(
                SyncEventKind.AUTH_REQUIRED, operation_id=operation.id, error=str(error)
            )
            return

        updated = self._queue.mark_failed_attempt(operation.id, str(error))
        if updated is not None:
            self._scheduler.schedule_retry(updated, self.process_queue)


def operation_category(category: ResourceCategory | str) -> ResourceCategory:
    """Coerce a category name to ResourceCategory.

    Raises:
        SyncError: If the category is unknown.
    """
    try:
        return ResourceCategory(category)
    except ValueError:
        raise SyncError(f"Unknown resource category: {category!r}") from None
