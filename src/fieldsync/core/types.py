"""Shared types for fieldsync.

This module defines the enums used by both the record pipeline and the
asset upload pipeline, plus the names of the metadata fields stamped onto
every remote record.
"""

from __future__ import annotations

from enum import Enum

# Metadata fields injected into every record written through the engine
LAST_MODIFIED_FIELD = "_lastModified"
MODIFIED_BY_FIELD = "_modifiedBy"
CREATED_FIELD = "_created"
CREATED_BY_FIELD = "_createdBy"


class ResourceCategory(str, Enum):
    """Category of a synced resource.

    The value is also the first segment of the remote address.
    """

    FORMS = "forms"
    SITES = "sites"
    TRAINING = "training"

    @property
    def is_record(self) -> bool:
        """Whether updates in this category go through conflict detection.

        Reference lists (sites) are last-writer-wins.
        """
        return self in _RECORD_CATEGORIES


_RECORD_CATEGORIES = frozenset({ResourceCategory.FORMS, ResourceCategory.TRAINING})


class OperationKind(str, Enum):
    """Kind of queued mutation."""

    CREATE = "create"
    REPLACE = "replace"
    MERGE_UPDATE = "merge_update"
    DELETE = "delete"

    @property
    def is_update(self) -> bool:
        """Whether this kind overwrites an existing record."""
        return self in (OperationKind.REPLACE, OperationKind.MERGE_UPDATE)


class FailureKind(str, Enum):
    """Classification of a failed remote call."""

    RETRYABLE = "retryable"
    TERMINAL_SESSION = "terminal_session"
