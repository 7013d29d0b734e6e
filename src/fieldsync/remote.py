"""Remote record store interface.

This module provides:
- RemoteStore / RemoteReference / Subscription: Protocols the engine talks to
- RemoteError, RemoteAuthError, RemoteNotFoundError: Remote failures
- MemoryRemoteStore: In-process store with the same semantics

Addresses are slash-separated paths ("forms/form-42"). A record is a JSON
object stored at an address; the value of a parent path is the nested
object of its children.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class RemoteError(Exception):
    """Base exception for remote store errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteAuthError(RemoteError):
    """Remote store rejected the credentials (401/403)."""


class RemoteNotFoundError(RemoteError):
    """Remote address does not exist."""


class Subscription(Protocol):
    """Handle of a live subscription."""

    def close(self) -> None:
        """Stop receiving values. Safe to call more than once."""
        ...

    @property
    def closed(self) -> bool: ...


class RemoteReference(Protocol):
    """A single address in the remote store."""

    @property
    def path(self) -> str: ...

    def set(self, value: dict[str, Any]) -> None:
        """Replace the value at this address."""
        ...

    def update(self, partial: dict[str, Any]) -> None:
        """Merge top-level fields into the value at this address."""
        ...

    def remove(self) -> None:
        """Delete the value at this address."""
        ...

    def get(self) -> Any:
        """Read the current value, or None if absent."""
        ...

    def listen(
        self, callback: ValueCallback, on_error: ErrorCallback | None = None
    ) -> Subscription:
        """Call back with the current value and every later change."""
        ...


class RemoteStore(Protocol):
    """Factory of references to remote addresses."""

    def reference(self, path: str) -> RemoteReference: ...


def split_path(path: str) -> list[str]:
    """Split an address into its non-empty segments."""
    return [segment for segment in path.strip("/").split("/") if segment]


class _MemorySubscription:
    def __init__(self, on_close: Callable[[], None]) -> None:
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._on_close()

    def __enter__(self) -> _MemorySubscription:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class MemoryRemoteStore:
    """In-process RemoteStore.

    Values are deep-copied in and out, so callers never share state with
    the store. Listeners are called synchronously after each write to an
    address they watch (the address itself, an ancestor, or a descendant).
    """

    def __init__(self) -> None:
        self._root: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._listeners: list[tuple[str, ValueCallback]] = []

    def reference(self, path: str) -> MemoryReference:
        return MemoryReference(self, "/".join(split_path(path)))

    def _read(self, path: str) -> Any:
        with self._lock:
            node: Any = self._root
            for segment in split_path(path):
                if not isinstance(node, dict) or segment not in node:
                    return None
                node = node[segment]
            return copy.deepcopy(node)

    def _write(self, path: str, value: Any) -> None:
        segments = split_path(path)
        if not segments:
            raise RemoteError("Cannot write to the root address")

        with self._lock:
            if value is None:
                self._delete(segments)
            else:
                node = self._root
                for segment in segments[:-1]:
                    child = node.get(segment)
                    if not isinstance(child, dict):
                        child = {}
                        node[segment] = child
                    node = child
                node[segments[-1]] = copy.deepcopy(value)
            listeners = [
                (watched, cb) for watched, cb in self._listeners if _related(watched, path)
            ]

        for watched, callback in listeners:
            callback(self._read(watched))

    def _delete(self, segments: list[str]) -> None:
        chain = [self._root]
        for segment in segments[:-1]:
            child = chain[-1].get(segment)
            if not isinstance(child, dict):
                return
            chain.append(child)
        chain[-1].pop(segments[-1], None)

        # Prune parents left empty
        for depth in range(len(chain) - 1, 0, -1):
            if chain[depth]:
                break
            chain[depth - 1].pop(segments[depth - 1], None)

    def _listen(self, path: str, callback: ValueCallback) -> _MemorySubscription:
        entry = (path, callback)
        with self._lock:
            self._listeners.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        callback(self._read(path))
        return _MemorySubscription(unsubscribe)


def _related(watched: str, written: str) -> bool:
    a, b = split_path(watched), split_path(written)
    shorter = min(len(a), len(b))
    return a[:shorter] == b[:shorter]


class MemoryReference:
    """Reference into a MemoryRemoteStore."""

    def __init__(self, store: MemoryRemoteStore, path: str) -> None:
        self._store = store
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def set(self, value: dict[str, Any]) -> None:
        self._store._write(self._path, value)

    def update(self, partial: dict[str, Any]) -> None:
        with self._store._lock:
            current = self._store._read(self._path)
            merged = dict(current) if isinstance(current, dict) else {}
            for key, value in partial.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            self._store._write(self._path, merged or None)

    def remove(self) -> None:
        self._store._write(self._path, None)

    def get(self) -> Any:
        return self._store._read(self._path)

    def listen(
        self, callback: ValueCallback, on_error: ErrorCallback | None = None
    ) -> _MemorySubscription:
        return self._store._listen(self._path, callback)

    def __repr__(self) -> str:
        return f"MemoryReference({self._path!r})"
