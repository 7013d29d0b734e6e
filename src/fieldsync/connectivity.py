"""Connectivity and lifecycle management.

This module provides:
- ConnectivityManager: Starts both pipelines and drains them on reconnect
- NetworkMonitor: Polls a health probe and reports transitions
- InitResult: What init() found

Lifecycle:
    init() ─► load queues ─► connected? ─► drain records and uploads
    on_connectivity_restored() ─► drain records and uploads
    on_connectivity_lost() ─► mark offline (queued work stays persisted)
    disconnect() ─► end asset session, cancel retry timers, reset status
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from fieldsync.assets.uploader import AssetUploader
    from fieldsync.sync.engine import RecordSyncEngine

logger = logging.getLogger(__name__)

NETWORK_CHECK_INTERVAL = 5.0  # seconds between health probes


@dataclass
class InitResult:
    """Result of ConnectivityManager.init()."""

    pending_operations: int
    pending_uploads: int
    connected: bool


class ConnectivityManager:
    """Wires connectivity transitions to the record and upload pipelines.

    Usage:
        manager = ConnectivityManager(engine, uploader)
        manager.init(connected=store.health_check())
        monitor = manager.start_monitor(store.health_check)
        ...
        monitor.stop()
        manager.disconnect()
    """

    def __init__(self, engine: RecordSyncEngine, uploader: AssetUploader | None = None) -> None:
        self._engine = engine
        self._uploader = uploader

    def init(self, connected: bool = True) -> InitResult:
        """Load persisted queues and drain them if connected."""
        pending_operations = self._engine.load()
        pending_uploads = 0
        if self._uploader is not None:
            self._uploader.set_network_available(connected)
            pending_uploads = self._uploader.init()

        self._engine.set_connected(connected)
        if connected and pending_operations:
            pending_operations = self._engine.process_queue().pending

        logger.info(
            "Sync initialized: %d pending operations, %d pending uploads",
            pending_operations, pending_uploads,
        )
        return InitResult(pending_operations, pending_uploads, connected)

    def on_connectivity_restored(self) -> None:
        """Mark online and drain both queues."""
        logger.info("Connectivity restored")
        self._engine.set_connected(True)
        self._engine.process_queue()
        if self._uploader is not None:
            self._uploader.set_network_available(True)
            self._uploader.process_upload_queue()

    def on_connectivity_lost(self) -> None:
        """Mark offline. Nothing queued is lost."""
        logger.info("Connectivity lost")
        self._engine.set_connected(False)
        if self._uploader is not None:
            self._uploader.set_network_available(False)

    def disconnect(self) -> None:
        """Tear down sessions and timers, keep persisted queues."""
        self._engine.close()
        if self._uploader is not None:
            self._uploader.disconnect()

        notifier = self._engine.notifier
        notifier.reset()
        self._engine.queue.publish_counts()
        if self._uploader is not None:
            self._uploader.queue.publish_counts()
        logger.info("Sync disconnected")

    def start_monitor(
        self,
        probe: Callable[[], bool],
        interval: float = NETWORK_CHECK_INTERVAL,
    ) -> NetworkMonitor:
        """Start polling a health probe and react to transitions."""
        monitor = NetworkMonitor(
            probe,
            on_restored=self.on_connectivity_restored,
            on_lost=self.on_connectivity_lost,
            interval=interval,
            initially_online=self._engine.connected,
        )
        monitor.start()
        return monitor


class NetworkMonitor:
    """Polls a health probe on a daemon thread and reports transitions.

    A probe that raises counts as offline.
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        on_restored: Callable[[], None],
        on_lost: Callable[[], None],
        interval: float = NETWORK_CHECK_INTERVAL,
        initially_online: bool | None = None,
    ) -> None:
        self._probe = probe
        self._on_restored = on_restored
        self._on_lost = on_lost
        self._interval = interval
        self._online = initially_online
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def online(self) -> bool | None:
        """Last probe result (None before the first probe)."""
        return self._online

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("NetworkMonitor already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="NetworkMonitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop polling."""
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=5.0)
        self._thread = None

    def check(self) -> bool:
        """Probe once and fire the transition callback if the state changed."""
        try:
            online = bool(self._probe())
        except Exception as e:
            logger.debug("Health probe failed: %s", e)
            online = False

        previous, self._online = self._online, online
        if online == previous:
            return online

        try:
            if online:
                self._on_restored()
            else:
                self._on_lost()
        except Exception:
            logger.exception("Connectivity callback failed")
        return online

    def _run(self) -> None:
        while not self._stop.is_set():
            self.check()
            self._stop.wait(self._interval)
