"""Sync status aggregation and observer notification.

This module provides:
- SyncStatus: Aggregate counters and flags describing the engine
- StatusNotifier: Owner of one SyncStatus; pushes every transition to observers

Architecture:
    OperationQueue ─┐
    SyncExecutor ───┼──► StatusNotifier ──► on_status_change callbacks (UI)
    AssetUploader ──┘                   └─► on_sync_event callbacks

One notifier is created per engine and passed into each component
constructor, so two engines in the same process never share state.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from fieldsync.sync.types import SyncEventKind

logger = logging.getLogger(__name__)


@dataclass
class SyncStatus:
    """Process-wide status of one engine.

    Attributes:
        connected: Remote record store is reachable.
        syncing: A record queue drain is in progress.
        pending_count: Operations in the record queue (terminal ones included).
        pending_uploads: Items in the upload queue.
        conflicts_resolved: Conflicts detected (and resolved) since start.
        last_successful_drain: ISO timestamp of the last successful remote write.
        failed_count: Record operations flagged terminal.
        failed_uploads: Uploads dropped after exhausting their retries.
        assets_connected: Asset backend session is valid.
        auth_required: A call failed authentication; waiting for re-auth.
    """

    connected: bool = False
    syncing: bool = False
    pending_count: int = 0
    pending_uploads: int = 0
    conflicts_resolved: int = 0
    last_successful_drain: str | None = None
    failed_count: int = 0
    failed_uploads: int = 0
    assets_connected: bool = False
    auth_required: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return dataclasses.asdict(self)


_FIELDS = frozenset(f.name for f in dataclasses.fields(SyncStatus))


class StatusNotifier:
    """Owns a SyncStatus and notifies observers of every transition.

    Usage:
        notifier = StatusNotifier()
        unsubscribe = notifier.on_status_change(lambda s: print(s.pending_count))
        notifier.update(pending_count=3)
        unsubscribe()
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._status = SyncStatus()
        self._status_listeners: list[Callable[[SyncStatus], None]] = []
        self._event_listeners: list[Callable[[SyncEventKind, dict[str, Any]], None]] = []

    @property
    def status(self) -> SyncStatus:
        """The live status object (read-only by convention)."""
        return self._status

    def snapshot(self) -> SyncStatus:
        """Get a copy of the current status."""
        with self._lock:
            return dataclasses.replace(self._status)

    def update(self, **changes: Any) -> SyncStatus:
        """Apply field changes and notify status observers.

        Args:
            **changes: SyncStatus field values.

        Returns:
            Snapshot of the status after the update.

        Raises:
            AttributeError: If a field name is unknown.
        """
        unknown = set(changes) - _FIELDS
        if unknown:
            raise AttributeError(f"Unknown status fields: {sorted(unknown)}")

        with self._lock:
            for name, value in changes.items():
                setattr(self._status, name, value)
            snapshot = dataclasses.replace(self._status)
            listeners = list(self._status_listeners)

        self._fire(listeners, snapshot)
        return snapshot

    def increment(self, name: str, amount: int = 1) -> SyncStatus:
        """Increment a counter field and notify."""
        with self._lock:
            current = getattr(self._status, name)
            return self.update(**{name: current + amount})

    def mark_drained(self, **changes: Any) -> SyncStatus:
        """Record a successful remote write now."""
        return self.update(last_successful_drain=datetime.now(UTC).isoformat(), **changes)

    def reset(self) -> SyncStatus:
        """Start over from a fresh status (explicit disconnect only)."""
        with self._lock:
            self._status = SyncStatus()
        return self.update()

    def on_status_change(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        """Register a status observer.

        Args:
            callback: Called with a SyncStatus snapshot on every transition.

        Returns:
            Function that unregisters the callback.
        """
        with self._lock:
            self._status_listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._status_listeners:
                    self._status_listeners.remove(callback)

        return unsubscribe

    def on_sync_event(
        self, callback: Callable[[SyncEventKind, dict[str, Any]], None]
    ) -> Callable[[], None]:
        """Register an observer for discrete sync events (queued, synced, failed...)."""
        with self._lock:
            self._event_listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._event_listeners:
                    self._event_listeners.remove(callback)

        return unsubscribe

    def emit(self, kind: SyncEventKind, /, **details: Any) -> None:
        """Send a sync event to event observers."""
        logger.debug("Sync event %s: %s", kind.value, details)
        with self._lock:
            listeners = list(self._event_listeners)
        for callback in listeners:
            try:
                callback(kind, details)
            except Exception as e:
                logger.warning("Sync event observer failed: %s", e)
                logger.debug("Full traceback:", exc_info=True)

    @staticmethod
    def _fire(listeners: list[Callable[[SyncStatus], None]], snapshot: SyncStatus) -> None:
        for callback in listeners:
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning("Status observer failed: %s", e)
                logger.debug("Full traceback:", exc_info=True)
