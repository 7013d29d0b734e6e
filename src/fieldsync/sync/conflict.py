"""Conflict detection and resolution for record updates.

This module provides:
- ConflictAction / ConflictDecision: Outcome of a resolution policy
- ConflictContext: What a policy gets to decide on
- keep_remote: The default policy
- ConflictResolver: Detects stale updates and runs the registered policy

Protocol (replace and merge-update of record categories only):
    1. Read the current remote record at the operation address
    2. No remote record, remote ``_lastModified`` <= base stamp, or remote
       last written by this device: no conflict, apply directly
    3. Otherwise run the policy and apply its decision:
       KEEP_LOCAL writes the local payload, KEEP_REMOTE writes nothing,
       MERGED writes the merged record

The read and the following write are two separate remote calls. Another
device writing in between is not detected; its write is overwritten.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from fieldsync.core.types import LAST_MODIFIED_FIELD, MODIFIED_BY_FIELD
from fieldsync.sync.types import SyncError, SyncEventKind

if TYPE_CHECKING:
    from fieldsync.core.types import ResourceCategory
    from fieldsync.remote import RemoteReference
    from fieldsync.status import StatusNotifier
    from fieldsync.sync.types import SyncOperation

logger = logging.getLogger(__name__)


class ConflictAction(Enum):
    """Which version of a conflicting record wins."""

    KEEP_LOCAL = "local"
    KEEP_REMOTE = "remote"
    MERGED = "merged"


@dataclass(frozen=True)
class ConflictDecision:
    """Outcome of a resolution policy.

    Attributes:
        action: Which version wins.
        merged: Record to write when action is MERGED.
    """

    action: ConflictAction
    merged: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.action == ConflictAction.MERGED and self.merged is None:
            raise SyncError("A merged decision needs a merged record")

    @classmethod
    def keep_local(cls) -> ConflictDecision:
        return cls(ConflictAction.KEEP_LOCAL)

    @classmethod
    def keep_remote(cls) -> ConflictDecision:
        return cls(ConflictAction.KEEP_REMOTE)

    @classmethod
    def merge(cls, record: dict[str, Any]) -> ConflictDecision:
        return cls(ConflictAction.MERGED, dict(record))

    @classmethod
    def coerce(cls, value: Any) -> ConflictDecision:
        """Build a decision from what a policy returned.

        Accepts a ConflictDecision, a non-merge ConflictAction, the strings
        "local" and "remote" ("server" is an alias of "remote"), or a dict
        taken as the merged record.

        Raises:
            SyncError: If the value is none of the above.
        """
        if isinstance(value, ConflictDecision):
            return value
        if isinstance(value, ConflictAction):
            return cls(value)
        if isinstance(value, dict):
            return cls.merge(value)
        if value == "local":
            return cls.keep_local()
        if value in ("remote", "server"):
            return cls.keep_remote()
        raise SyncError(f"Unsupported conflict decision: {value!r}")


@dataclass
class ConflictContext:
    """A detected conflict handed to the resolution policy.

    Attributes:
        local: Payload of the queued operation.
        remote: Current remote record.
        record_id: Last segment of the address.
        address: Remote path of the record.
        category: Resource category of the record.
        base_stamp: Remote stamp the local edit was based on.
        remote_stamp: Current remote ``_lastModified``.
    """

    local: dict[str, Any]
    remote: dict[str, Any]
    record_id: str
    address: str
    category: ResourceCategory
    base_stamp: int
    remote_stamp: int


ConflictPolicy = Callable[[ConflictContext], Any]


def keep_remote(context: ConflictContext) -> ConflictDecision:
    """Default policy: the remote record is authoritative."""
    return ConflictDecision.keep_remote()


def _stamp_of(record: dict[str, Any] | None, fallback: int = 0) -> int:
    if not record:
        return fallback
    try:
        return int(record.get(LAST_MODIFIED_FIELD) or fallback)
    except (TypeError, ValueError):
        return fallback


class ConflictResolver:
    """Detects stale record updates and resolves them with a policy.

    Usage:
        resolver = ConflictResolver(notifier, device_id)
        unsubscribe = resolver.set_policy(lambda ctx: "local")
        decision = resolver.check(operation, remote.reference(operation.address))
        unsubscribe()  # back to keep-remote
    """

    def __init__(self, notifier: StatusNotifier, device_id: str) -> None:
        self._notifier = notifier
        self._device_id = device_id
        self._policy: ConflictPolicy = keep_remote
        self._lock = threading.Lock()

    @property
    def device_id(self) -> str:
        return self._device_id

    def set_policy(self, policy: ConflictPolicy) -> Callable[[], None]:
        """Register the resolution policy.

        Returns:
            Function restoring the default policy (if this one is still set).
        """
        with self._lock:
            self._policy = policy

        def unsubscribe() -> None:
            with self._lock:
                if self._policy is policy:
                    self._policy = keep_remote

        return unsubscribe

    def reset_policy(self) -> None:
        with self._lock:
            self._policy = keep_remote

    @staticmethod
    def applies_to(operation: SyncOperation) -> bool:
        """Whether an operation goes through conflict checking."""
        return operation.kind.is_update and operation.category.is_record

    def is_conflict(self, operation: SyncOperation, remote: Any) -> bool:
        """Decide whether a remote record makes the operation stale."""
        if not isinstance(remote, dict) or not remote:
            return False
        if remote.get(MODIFIED_BY_FIELD) == self._device_id:
            return False
        return _stamp_of(remote) > (operation.base_stamp or 0)

    def check(
        self, operation: SyncOperation, reference: RemoteReference
    ) -> ConflictDecision | None:
        """Read the remote record and resolve a conflict if there is one.

        Returns:
            None if there is no conflict, otherwise the policy decision.

        Raises:
            RemoteError: If the remote read fails.
            SyncError: If the policy returns something unusable.
        """
        remote = reference.get()
        if not self.is_conflict(operation, remote):
            return None

        context = ConflictContext(
            local=dict(operation.payload or {}),
            remote=remote,
            record_id=operation.record_id,
            address=operation.address,
            category=operation.category,
            base_stamp=operation.base_stamp or 0,
            remote_stamp=_stamp_of(remote),
        )
        return self.resolve(context)

    def resolve(self, context: ConflictContext) -> ConflictDecision:
        """Run the policy on a detected conflict and count it."""
        with self._lock:
            policy = self._policy

        logger.warning(
            "Conflict on %s: remote stamp %d is newer than base %d (by %s)",
            context.address,
            context.remote_stamp,
            context.base_stamp,
            context.remote.get(MODIFIED_BY_FIELD, "unknown device"),
        )

        decision = ConflictDecision.coerce(policy(context))

        self._notifier.increment("conflicts_resolved")
        self._notifier.emit(
            SyncEventKind.CONFLICT,
            address=context.address,
            record_id=context.record_id,
            category=context.category.value,
            resolution=decision.action.value,
        )
        logger.info("Conflict on %s resolved: %s", context.address, decision.action.value)
        return decision
