"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError: Engine-level exception base
- SyncOperation: One queued record mutation
- UploadItem: One queued binary asset
- ExecutionResult: Outcome of executing one operation
- WriteResult, BatchSyncResult, DrainResult: Results returned to callers
- UploadResult, UploadProgress: Asset pipeline results and progress
- SyncEventKind: Discrete events pushed to sync-event observers
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from typing import Any

from fieldsync.core.types import OperationKind, ResourceCategory


class SyncError(Exception):
    """Base exception for sync errors."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class SyncOperation:
    """A queued mutation intent for one remote record.

    Attributes:
        id: Unique operation id
        category: Resource category of the target record
        kind: Mutation kind
        address: Remote path of the record (stable once created)
        payload: Record snapshot, or None for deletes
        timestamp: Creation time in epoch milliseconds
        created_at: Creation time as ISO string
        device_id: Device that originated the operation
        attempts: Failed executions so far (only increases)
        base_stamp: Remote ``_lastModified`` the local edit was based on
        last_error: Message of the most recent failure
        failed_at: Set once the operation is terminal
    """

    id: str
    category: ResourceCategory
    kind: OperationKind
    address: str
    payload: dict[str, Any] | None
    timestamp: int
    created_at: str
    device_id: str
    attempts: int = 0
    base_stamp: int | None = None
    last_error: str | None = None
    failed_at: str | None = None

    @classmethod
    def create(
        cls,
        category: ResourceCategory,
        kind: OperationKind,
        address: str,
        payload: dict[str, Any] | None,
        device_id: str,
        base_stamp: int | None = None,
    ) -> SyncOperation:
        """Create a new operation with generated id and timestamps."""
        if kind != OperationKind.DELETE and payload is None:
            raise SyncError(f"{kind.value} operation on {address} needs a payload")
        return cls(
            id=uuid.uuid4().hex,
            category=category,
            kind=kind,
            address=address,
            payload=None if kind == OperationKind.DELETE else dict(payload or {}),
            timestamp=_now_ms(),
            created_at=_iso_now(),
            device_id=device_id,
            base_stamp=base_stamp,
        )

    @property
    def is_terminal(self) -> bool:
        """Whether automatic retries are exhausted."""
        return self.failed_at is not None

    @property
    def record_id(self) -> str:
        """Last segment of the address."""
        return self.address.rsplit("/", 1)[-1]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "category": self.category.value,
            "kind": self.kind.value,
            "address": self.address,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "created_at": self.created_at,
            "device_id": self.device_id,
            "attempts": self.attempts,
            "base_stamp": self.base_stamp,
            "last_error": self.last_error,
            "failed_at": self.failed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncOperation:
        """Create from a persisted dictionary."""
        return cls(
            id=data["id"],
            category=ResourceCategory(data["category"]),
            kind=OperationKind(data["kind"]),
            address=data["address"],
            payload=data.get("payload"),
            timestamp=int(data["timestamp"]),
            created_at=data["created_at"],
            device_id=data["device_id"],
            attempts=int(data.get("attempts", 0)),
            base_stamp=data.get("base_stamp"),
            last_error=data.get("last_error"),
            failed_at=data.get("failed_at"),
        )

    def __repr__(self) -> str:
        return (
            f"SyncOperation({self.kind.value}, "
            f"address={self.address!r}, "
            f"attempts={self.attempts})"
        )


@dataclass
class UploadItem:
    """A queued binary asset.

    Attributes:
        id: Unique upload id
        payload: Base64 text of the binary payload
        filename: Target filename
        category: Drives folder placement
        metadata: Arbitrary caller metadata
        mime_type: MIME type of the payload
        attempts: Failed uploads so far
        timestamp: Creation time in epoch milliseconds
        created_at: Creation time as ISO string
        last_error: Message of the most recent failure
    """

    id: str
    payload: str
    filename: str
    category: str | None
    metadata: dict[str, Any]
    mime_type: str
    timestamp: int
    created_at: str
    attempts: int = 0
    last_error: str | None = None

    @classmethod
    def create(
        cls,
        payload: str,
        filename: str,
        category: str | None,
        mime_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> UploadItem:
        """Create a new upload item with generated id and timestamps."""
        return cls(
            id=f"upload-{uuid.uuid4().hex}",
            payload=payload,
            filename=filename,
            category=category,
            metadata=dict(metadata or {}),
            mime_type=mime_type,
            timestamp=_now_ms(),
            created_at=_iso_now(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "payload": self.payload,
            "filename": self.filename,
            "category": self.category,
            "metadata": self.metadata,
            "mime_type": self.mime_type,
            "timestamp": self.timestamp,
            "created_at": self.created_at,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UploadItem:
        return cls(
            id=data["id"],
            payload=data["payload"],
            filename=data["filename"],
            category=data.get("category"),
            metadata=dict(data.get("metadata") or {}),
            mime_type=data.get("mime_type", "application/octet-stream"),
            timestamp=int(data["timestamp"]),
            created_at=data["created_at"],
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
        )

    def __repr__(self) -> str:
        return f"UploadItem({self.filename!r}, category={self.category!r}, attempts={self.attempts})"


class ExecutionResult(Enum):
    """Outcome of executing one queued item.

    AUTH_REQUIRED leaves the item untouched (no attempt counted) and stops
    the drain until the session is re-established.
    """

    SUCCESS = auto()
    TRANSIENT_FAILURE = auto()
    TERMINAL_FAILURE = auto()
    AUTH_REQUIRED = auto()


class SyncEventKind(str, Enum):
    """Discrete events pushed to sync-event observers."""

    QUEUED = "queued"
    SYNCED = "synced"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    CONFLICT = "conflict"
    AUTH_REQUIRED = "auth_required"
    UPLOADED = "uploaded"
    UPLOAD_FAILED = "upload_failed"


@dataclass
class WriteResult:
    """Result of a record mutation call.

    Exactly one of ``success`` (landed remotely) or ``queued`` is true
    for any call that returns.
    """

    success: bool
    queued: bool
    record_id: str | None = None
    operation_id: str | None = None
    error: str | None = None


@dataclass
class BatchSyncResult:
    """Result of syncing several records with conflict checks."""

    synced: int = 0
    conflicts: int = 0
    errors: int = 0
    queued: int = 0


@dataclass
class DrainResult:
    """Result of one drain of a queue.

    Attributes:
        processed: Items applied and removed.
        failed: Items that failed in this drain.
        skipped: Items not attempted (terminal, or blocked behind a failure).
        pending: Items left in the queue afterwards.
        offline: The drain did not run because the engine is offline.
        already_running: The drain did not run because another one is in flight.
        auth_required: The drain stopped on an authentication failure.
    """

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    pending: int = 0
    offline: bool = False
    already_running: bool = False
    auth_required: bool = False


@dataclass
class UploadResult:
    """Result of an asset upload call."""

    success: bool
    queued: bool = False
    file_id: str | None = None
    queue_id: str | None = None
    message: str = ""
    response: dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadProgress:
    """Progress information for a direct upload."""

    stage: str  # "starting", "uploading", "complete" or "error"
    filename: str
    percent: int = 0
    error: str | None = None


# Type alias for progress callback
ProgressCallback = Callable[[UploadProgress], None]
