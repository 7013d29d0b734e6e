"""Core module - Shared configuration, types and local storage."""

from fieldsync.core.config import (
    DEFAULT_FOLDER_PATHS,
    DEFAULT_RETRY_DELAYS,
    DriveConfig,
    EngineConfig,
    RemoteConfig,
)
from fieldsync.core.storage import (
    LocalStore,
    MemoryStore,
    SQLiteStore,
    StorageQuotaError,
)
from fieldsync.core.types import (
    CREATED_BY_FIELD,
    CREATED_FIELD,
    LAST_MODIFIED_FIELD,
    MODIFIED_BY_FIELD,
    FailureKind,
    OperationKind,
    ResourceCategory,
)

__all__ = [
    # Config
    "DEFAULT_FOLDER_PATHS",
    "DEFAULT_RETRY_DELAYS",
    "DriveConfig",
    "EngineConfig",
    "RemoteConfig",
    # Storage
    "LocalStore",
    "MemoryStore",
    "SQLiteStore",
    "StorageQuotaError",
    # Types
    "CREATED_BY_FIELD",
    "CREATED_FIELD",
    "LAST_MODIFIED_FIELD",
    "MODIFIED_BY_FIELD",
    "FailureKind",
    "OperationKind",
    "ResourceCategory",
]
