"""Asset upload pipeline.

This module provides:
- AssetUploader: Direct uploads with offline queuing, and the queue drain

Flow:
    upload() ─► connected? ─yes─► resolve folder ─► multipart upload ─► UploadResult
                   │                                      │
                   no                              transient failure
                   ▼                                      ▼
            UploadQueue.enqueue() ◄───────────────────────┘

    process_upload_queue() uploads queued items in FIFO order. A failed
    item schedules a retry drain; after its retries are exhausted it is
    dropped and counted in SyncStatus.failed_uploads. While the network is
    reported down (set_network_available) nothing is drained and attempts
    do not advance.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import TYPE_CHECKING, Any

from fieldsync.assets.drive import DriveAuthError
from fieldsync.assets.folders import FolderResolver
from fieldsync.core.config import EngineConfig
from fieldsync.sync.queue import UploadQueue
from fieldsync.sync.retry import RetryScheduler, is_transient
from fieldsync.sync.types import (
    DrainResult,
    SyncEventKind,
    UploadItem,
    UploadProgress,
    UploadResult,
)

if TYPE_CHECKING:
    from fieldsync.assets.drive import DriveClient
    from fieldsync.core.storage import LocalStore
    from fieldsync.status import StatusNotifier
    from fieldsync.sync.retry import TimerFactory
    from fieldsync.sync.types import ProgressCallback

logger = logging.getLogger(__name__)


class AssetUploader:
    """Uploads binary assets, queuing them durably while disconnected.

    Usage:
        uploader = AssetUploader(drive, store, notifier)
        uploader.init()
        result = uploader.upload(pdf_bytes, "incident-7.pdf", category="incident")
        if result.queued:
            print("will upload later:", result.queue_id)
    """

    def __init__(
        self,
        drive: DriveClient,
        store: LocalStore,
        notifier: StatusNotifier,
        config: EngineConfig | None = None,
        timer_factory: TimerFactory | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            drive: Asset backend client.
            store: Durable local store for the upload queue.
            notifier: Status notifier of the engine.
            config: Engine configuration (queue key, retry ladder).
            timer_factory: Factory of retry timers.
            on_progress: Progress callback for direct uploads.
        """
        self._drive = drive
        self._notifier = notifier
        self._config = config or EngineConfig()
        self._on_progress = on_progress

        self._queue = UploadQueue(store, self._config.upload_queue_key, notifier)
        self._scheduler = RetryScheduler(
            self._config.retry_delays, self._config.upload_max_retries, timer_factory
        )
        self._folders = FolderResolver(drive)

        self._lock = threading.Lock()
        self._draining = False
        self._rerun = False
        self._network_available = True

        drive.on_connect(self._session_started)
        drive.on_disconnect(self._session_ended)

    @property
    def queue(self) -> UploadQueue:
        return self._queue

    @property
    def folders(self) -> FolderResolver:
        return self._folders

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    # === Lifecycle ===

    def init(self) -> int:
        """Load queued uploads, resume a stored session and drain if possible.

        Returns:
            Number of pending uploads after the drain.
        """
        self._queue.load()
        self._drive.restore_session()
        connected = self._drive.is_connected()
        self._notifier.update(assets_connected=connected)
        if self.online and self._queue:
            self.process_upload_queue()
        return len(self._queue)

    def disconnect(self) -> None:
        """End the backend session and cancel retries. Queued uploads are kept."""
        self._scheduler.cancel_all()
        self._drive.disconnect()

    def set_network_available(self, available: bool) -> None:
        """Record a network transition reported by the connectivity layer.

        While the network is down the queue is not drained, so retry timers
        firing in that window do not use up attempts.
        """
        with self._lock:
            changed = available != self._network_available
            self._network_available = available
        if changed:
            logger.info("Network %s for uploads", "available" if available else "unavailable")

    @property
    def online(self) -> bool:
        """Whether the network is up and the backend session is valid."""
        return self._network_available and self._drive.is_connected()

    def _session_started(self) -> None:
        self._notifier.update(assets_connected=True)
        if self._queue:
            self.process_upload_queue()

    def _session_ended(self) -> None:
        self._notifier.update(assets_connected=False)

    # === Uploads ===

    def queue_upload(
        self,
        payload: bytes | str,
        filename: str,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
        mime_type: str | None = None,
    ) -> str:
        """Queue an asset for later upload.

        Args:
            payload: Raw bytes, or base64 text.
            filename: Target filename.
            category: Selects the destination folder.
            metadata: Arbitrary caller metadata kept with the item.
            mime_type: MIME type (defaults to the configured one).

        Returns:
            The upload queue id.

        Raises:
            StorageQuotaError: If the local store has no room for the item.
        """
        if isinstance(payload, bytes):
            payload = base64.b64encode(payload).decode("ascii")

        item = UploadItem.create(
            payload=payload,
            filename=filename,
            category=category,
            mime_type=mime_type or self._drive.config.mime_type,
            metadata=metadata,
        )
        item_id = self._queue.enqueue(item)
        self._notifier.emit(SyncEventKind.QUEUED, upload_id=item_id, filename=filename)
        logger.info("Queued upload of %s", filename)
        return item_id

    def upload(
        self,
        payload: bytes,
        filename: str,
        category: str | None = None,
        metadata: dict[str, Any] | None = None,
        mime_type: str | None = None,
        queue_if_offline: bool = True,
    ) -> UploadResult:
        """Upload an asset now, or queue it if that is not possible.

        Raises:
            DriveAuthError: If not connected and queue_if_offline is False.
            DriveError: On non-transient backend errors.
        """
        if not self.online:
            if queue_if_offline:
                queue_id = self.queue_upload(payload, filename, category, metadata, mime_type)
                return UploadResult(
                    success=False,
                    queued=True,
                    queue_id=queue_id,
                    message="Upload queued - will sync when connected",
                )
            raise DriveAuthError("Not connected to the asset backend")

        self._progress("starting", filename, 0)
        try:
            self._progress("uploading", filename, 50)
            response = self._upload_one(payload, filename, category, mime_type)
        except Exception as e:
            self._progress("error", filename, error=str(e))
            if queue_if_offline and is_transient(e):
                logger.warning("Upload of %s failed, queuing: %s", filename, e)
                queue_id = self.queue_upload(payload, filename, category, metadata, mime_type)
                updated = self._queue.mark_failed_attempt(queue_id, str(e))
                if updated is not None:
                    self._scheduler.schedule_retry(updated, self.process_upload_queue)
                return UploadResult(
                    success=False,
                    queued=True,
                    queue_id=queue_id,
                    message="Upload queued due to error - will retry",
                )
            raise

        self._progress("complete", filename, 100)
        self._notifier.mark_drained()
        self._notifier.emit(SyncEventKind.UPLOADED, filename=filename, file_id=response.get("id"))
        return UploadResult(
            success=True, file_id=response.get("id"), message="Uploaded", response=response
        )

    def process_upload_queue(self) -> DrainResult:
        """Upload every queued item once, in FIFO order. Never raises.

        Returns immediately when offline. A call made while a drain is
        running makes that drain run one more pass.
        """
        if not self.online:
            return DrainResult(pending=len(self._queue), offline=True)

        with self._lock:
            if self._draining:
                self._rerun = True
                return DrainResult(pending=len(self._queue), already_running=True)
            self._draining = True
            self._rerun = False

        result = DrainResult()
        try:
            while True:
                self._drain_pass(result)
                with self._lock:
                    if not self._rerun or result.auth_required:
                        break
                    self._rerun = False
        except Exception:
            logger.exception("Upload drain failed")
        finally:
            with self._lock:
                self._draining = False

        result.pending = len(self._queue)
        if result.processed or result.failed:
            logger.info(
                "Upload drain finished: %d uploaded, %d failed, %d pending",
                result.processed, result.failed, result.pending,
            )
        return result

    def _drain_pass(self, result: DrainResult) -> None:
        for item in self._queue.list_pending():
            if not self.online:
                logger.info("Upload drain paused, offline")
                return
            if self._queue.get(item.id) is None:
                continue
            if not self._drain_item(item, result):
                return

    def _drain_item(self, item: UploadItem, result: DrainResult) -> bool:
        """Upload one queued item. Returns False if the drain must stop."""
        try:
            content = base64.b64decode(item.payload, validate=True)
        except (binascii.Error, ValueError) as e:
            self._drop(item, f"Unreadable payload: {e}")
            result.failed += 1
            return True

        try:
            response = self._upload_one(content, item.filename, item.category, item.mime_type)
        except DriveAuthError as e:
            logger.error("Upload drain stopped, session ended: %s", e)
            self._notifier.emit(SyncEventKind.AUTH_REQUIRED, upload_id=item.id, error=str(e))
            result.auth_required = True
            return False
        except Exception as e:
            result.failed += 1
            updated = self._queue.mark_failed_attempt(item.id, str(e))
            if updated is None:
                return True
            if self._scheduler.schedule_retry(updated, self.process_upload_queue):
                logger.warning(
                    "Upload of %s failed (attempt %d): %s", item.filename, updated.attempts, e
                )
            else:
                self._drop(updated, str(e))
            return True

        self._queue.remove(item.id)
        result.processed += 1
        self._notifier.mark_drained()
        self._notifier.emit(
            SyncEventKind.UPLOADED, upload_id=item.id, filename=item.filename,
            file_id=response.get("id"),
        )
        return True

    def _drop(self, item: UploadItem, error: str) -> None:
        self._queue.remove(item.id)
        self._notifier.increment("failed_uploads")
        self._notifier.emit(
            SyncEventKind.UPLOAD_FAILED, upload_id=item.id, filename=item.filename, error=error
        )
        logger.error("Upload of %s permanently failed: %s", item.filename, error)

    def _upload_one(
        self, payload: bytes, filename: str, category: str | None, mime_type: str | None
    ) -> dict[str, Any]:
        folder_id = self._folders.resolve_folder(category)
        return self._drive.upload_file(payload, filename, folder_id, mime_type)

    def _progress(
        self, stage: str, filename: str, percent: int = 0, error: str | None = None
    ) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(UploadProgress(stage, filename, percent, error))
        except Exception as e:
            logger.warning("Progress callback failed: %s", e)

    # === Queue and folders ===

    def clear_queue(self) -> int:
        """Drop every queued upload, cancel retries and reset the failure count."""
        self._scheduler.cancel_all()
        count = self._queue.clear()
        self._notifier.update(failed_uploads=0)
        return count

    def get_pending_count(self) -> int:
        return len(self._queue)

    def folder_structure(self) -> dict[str, Any]:
        """Describe where uploads go: root folder name and category subpaths."""
        config = self._drive.config
        return {"main": config.root_folder_name, "subfolders": dict(config.folder_paths)}

    def search_files(self, pattern: str) -> list[dict[str, Any]]:
        """Find uploaded files in the root folder whose name contains a pattern."""
        return self._drive.search_files(pattern, self._folders.root_folder())

    def delete_file(self, file_id: str) -> bool:
        return self._drive.delete_file(file_id)
