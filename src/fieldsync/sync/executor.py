"""Sync executor: applies queued record operations to the remote store.

This module provides:
- stamp_record: Inject modification (and creation) metadata into a payload
- SyncExecutor: Applies one operation and settles it in the queue

Dispatch:
    create        set(payload + creation stamps + modification stamps)
    replace       set(payload + modification stamps)
    merge_update  update(payload + modification stamps)
    delete        remove()

Replace and merge-update of record categories are checked for conflicts
first (see fieldsync.sync.conflict).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fieldsync.core.types import (
    CREATED_BY_FIELD,
    CREATED_FIELD,
    LAST_MODIFIED_FIELD,
    MODIFIED_BY_FIELD,
    FailureKind,
    OperationKind,
)
from fieldsync.sync.conflict import ConflictAction
from fieldsync.sync.retry import classify_failure
from fieldsync.sync.types import ExecutionResult, SyncEventKind

if TYPE_CHECKING:
    from fieldsync.remote import RemoteReference, RemoteStore
    from fieldsync.status import StatusNotifier
    from fieldsync.sync.conflict import ConflictResolver
    from fieldsync.sync.queue import OperationQueue
    from fieldsync.sync.retry import RetryScheduler
    from fieldsync.sync.types import SyncOperation

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def stamp_record(
    payload: dict[str, Any],
    device_id: str,
    now_ms: int,
    created_ms: int | None = None,
) -> dict[str, Any]:
    """Copy a payload with the metadata fields injected.

    Args:
        payload: Record fields.
        device_id: Device performing the write.
        now_ms: Modification time in epoch milliseconds.
        created_ms: Creation time; when given, creation fields are added
            unless the payload already carries them.

    Returns:
        New dictionary; the input is not modified.
    """
    record = dict(payload)
    if created_ms is not None:
        record.setdefault(CREATED_FIELD, created_ms)
        record.setdefault(CREATED_BY_FIELD, device_id)
    record[LAST_MODIFIED_FIELD] = now_ms
    record[MODIFIED_BY_FIELD] = device_id
    return record


class SyncExecutor:
    """Applies record operations and settles their queue entries.

    execute() is the drain path: it never raises, removes the operation on
    success and hands failures to the retry scheduler. apply() is the bare
    remote write used for immediate attempts; it raises on failure.
    """

    def __init__(
        self,
        remote: RemoteStore,
        queue: OperationQueue,
        scheduler: RetryScheduler,
        resolver: ConflictResolver,
        notifier: StatusNotifier,
        drain: Callable[[], Any],
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        """Initialize the executor.

        Args:
            remote: Remote record store.
            queue: Durable operation queue.
            scheduler: Retry scheduler for failed operations.
            resolver: Conflict resolver for record updates.
            notifier: Status notifier of the engine.
            drain: Drain function re-run when a retry timer fires.
            clock: Epoch milliseconds source for stamps.
        """
        self._remote = remote
        self._queue = queue
        self._scheduler = scheduler
        self._resolver = resolver
        self._notifier = notifier
        self._drain = drain
        self._clock = clock

        self._handlers: dict[OperationKind, Callable[[RemoteReference, SyncOperation], None]] = {
            OperationKind.CREATE: self._create,
            OperationKind.REPLACE: self._replace,
            OperationKind.MERGE_UPDATE: self._merge_update,
            OperationKind.DELETE: self._delete,
        }

    def apply(self, operation: SyncOperation) -> ConflictAction | None:
        """Apply one operation to the remote store.

        Returns:
            The conflict resolution taken, or None if there was no conflict.

        Raises:
            RemoteError: If a remote call fails.
            SyncError: If a conflict policy returns an unusable decision.
        """
        reference = self._remote.reference(operation.address)

        if self._resolver.applies_to(operation):
            decision = self._resolver.check(operation, reference)
            if decision is not None:
                if decision.action == ConflictAction.KEEP_REMOTE:
                    logger.info("Discarded local change to %s", operation.address)
                elif decision.action == ConflictAction.MERGED:
                    reference.set(
                        stamp_record(decision.merged or {}, operation.device_id, self._clock())
                    )
                else:
                    self._handlers[operation.kind](reference, operation)
                return decision.action

        self._handlers[operation.kind](reference, operation)
        return None

    def execute(self, operation: SyncOperation) -> ExecutionResult:
        """Apply a queued operation and update the queue with the outcome.

        Returns:
            SUCCESS (removed from queue), TRANSIENT_FAILURE (retry
            scheduled), TERMINAL_FAILURE (flagged terminal) or
            AUTH_REQUIRED (left untouched).
        """
        try:
            resolution = self.apply(operation)
        except Exception as e:
            return self._handle_failure(operation, e)

        self._queue.dequeue_success(operation.id)
        self._notifier.mark_drained()
        self._notifier.emit(
            SyncEventKind.SYNCED,
            operation_id=operation.id,
            address=operation.address,
            kind=operation.kind.value,
            resolution=resolution.value if resolution else None,
        )
        logger.debug("Synced %r", operation)
        return ExecutionResult.SUCCESS

    def _handle_failure(self, operation: SyncOperation, error: Exception) -> ExecutionResult:
        if classify_failure(error) == FailureKind.TERMINAL_SESSION:
            logger.error("Authentication failed on %s: %s", operation.address, error)
            self._notifier.update(auth_required=True)
            self._notifier.emit(
                SyncEventKind.AUTH_REQUIRED, operation_id=operation.id, error=str(error)
            )
            return ExecutionResult.AUTH_REQUIRED

        updated = self._queue.mark_failed_attempt(operation.id, str(error))
        if updated is None:
            # Cleared while in flight
            return ExecutionResult.TRANSIENT_FAILURE

        if self._scheduler.schedule_retry(updated, self._drain):
            logger.warning(
                "Sync of %s failed (attempt %d): %s", operation.address, updated.attempts, error
            )
            self._notifier.emit(
                SyncEventKind.RETRY_SCHEDULED,
                operation_id=operation.id,
                attempts=updated.attempts,
                delay=self._scheduler.delay_for(updated.attempts),
                error=str(error),
            )
            return ExecutionResult.TRANSIENT_FAILURE

        self._queue.mark_terminal(operation.id, str(error))
        logger.error(
            "Giving up on %s after %d attempts: %s", operation.address, updated.attempts, error
        )
        self._notifier.emit(
            SyncEventKind.FAILED,
            operation_id=operation.id,
            address=operation.address,
            attempts=updated.attempts,
            error=str(error),
        )
        return ExecutionResult.TERMINAL_FAILURE

    def _create(self, reference: RemoteReference, operation: SyncOperation) -> None:
        reference.set(
            stamp_record(
                operation.payload or {},
                operation.device_id,
                self._clock(),
                created_ms=operation.timestamp,
            )
        )

    def _replace(self, reference: RemoteReference, operation: SyncOperation) -> None:
        reference.set(stamp_record(operation.payload or {}, operation.device_id, self._clock()))

    def _merge_update(self, reference: RemoteReference, operation: SyncOperation) -> None:
        reference.update(
            stamp_record(operation.payload or {}, operation.device_id, self._clock())
        )

    def _delete(self, reference: RemoteReference, operation: SyncOperation) -> None:
        reference.remove()
