"""Record synchronization.

Architecture:
    RecordSyncEngine → OperationQueue → SyncExecutor → RemoteStore
                              ▲               │
                              └─ RetryScheduler ◄┘ (failed operations)

Components:
- **OperationQueue**: Durable FIFO of pending record mutations
- **SyncExecutor**: Applies one operation, stamping metadata fields
- **ConflictResolver**: Detects stale updates and runs the resolution policy
- **RetryScheduler**: Back-off ladder that re-runs the drain on a timer
- **RecordSyncEngine**: Record-level API (save, create, replace, delete, drain)

UploadQueue (same persistence, binary payloads) is used by fieldsync.assets.
"""

from fieldsync.sync.conflict import (
    ConflictAction,
    ConflictContext,
    ConflictDecision,
    ConflictPolicy,
    ConflictResolver,
    keep_remote,
)
from fieldsync.sync.engine import RecordSyncEngine, generate_device_id
from fieldsync.sync.executor import SyncExecutor, stamp_record
from fieldsync.sync.queue import OperationQueue, PersistentQueue, UploadQueue
from fieldsync.sync.retry import (
    RETRYABLE_STATUS_CODES,
    RetryScheduler,
    classify_failure,
    daemon_timer,
    retry_call,
)
from fieldsync.sync.types import (
    BatchSyncResult,
    DrainResult,
    ExecutionResult,
    ProgressCallback,
    SyncError,
    SyncEventKind,
    SyncOperation,
    UploadItem,
    UploadProgress,
    UploadResult,
    WriteResult,
)

__all__ = [
    # Conflict
    "ConflictAction",
    "ConflictContext",
    "ConflictDecision",
    "ConflictPolicy",
    "ConflictResolver",
    "keep_remote",
    # Engine
    "RecordSyncEngine",
    "generate_device_id",
    # Executor
    "SyncExecutor",
    "stamp_record",
    # Queue
    "OperationQueue",
    "PersistentQueue",
    "UploadQueue",
    # Retry
    "RETRYABLE_STATUS_CODES",
    "RetryScheduler",
    "classify_failure",
    "daemon_timer",
    "retry_call",
    # Types
    "BatchSyncResult",
    "DrainResult",
    "ExecutionResult",
    "ProgressCallback",
    "SyncError",
    "SyncEventKind",
    "SyncOperation",
    "UploadItem",
    "UploadProgress",
    "UploadResult",
    "WriteResult",
]
