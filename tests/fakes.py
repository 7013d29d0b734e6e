"""Test doubles shared by the sync tests.

- ManualTimers: Timer factory whose timers only fire when the test says so
- RecordingRemote: MemoryRemoteStore wrapper that records writes and injects failures
- FakeDrive: In-memory asset backend counting folder lookups and uploads
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fieldsync.core.config import DriveConfig
from fieldsync.remote import MemoryRemoteStore


class ManualTimer:
    """Timer that never fires on its own."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class ManualTimers:
    """Timer factory collecting every timer it creates."""

    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def delays(self) -> list[float]:
        return [t.delay for t in self.timers]

    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_next(self) -> ManualTimer:
        timer = self.pending()[0]
        timer.fire()
        return timer


class RecordingReference:
    def __init__(self, remote: RecordingRemote, path: str) -> None:
        self._remote = remote
        self._inner = remote.backend.reference(path)

    @property
    def path(self) -> str:
        return self._inner.path

    def set(self, value: dict[str, Any]) -> None:
        self._remote.record("set", self.path, value)
        self._inner.set(value)

    def update(self, partial: dict[str, Any]) -> None:
        self._remote.record("update", self.path, partial)
        self._inner.update(partial)

    def remove(self) -> None:
        self._remote.record("remove", self.path, None)
        self._inner.remove()

    def get(self) -> Any:
        self._remote.reads.append(self.path)
        return self._inner.get()

    def listen(self, callback: Callable[[Any], None], on_error: Any = None) -> Any:
        return self._inner.listen(callback, on_error)


class RecordingRemote:
    """RemoteStore recording successful writes; queued errors fail the next writes."""

    def __init__(self) -> None:
        self.backend = MemoryRemoteStore()
        self.calls: list[tuple[str, str, Any]] = []
        self.attempts: list[tuple[str, str]] = []
        self.reads: list[str] = []
        self.failures: list[Exception] = []

    def fail_next(self, *errors: Exception) -> None:
        self.failures.extend(errors)

    def reference(self, path: str) -> RecordingReference:
        return RecordingReference(self, path)

    def record(self, method: str, path: str, value: Any) -> None:
        self.attempts.append((method, path))
        if self.failures:
            raise self.failures.pop(0)
        self.calls.append((method, path, value))

    def seed(self, path: str, value: dict[str, Any]) -> None:
        """Write directly to the backend without recording."""
        self.backend.reference(path).set(value)


class FakeDrive:
    """In-memory asset backend with DriveClient's interface.

    Folders live in a dict keyed by (parent, name); every backend call is
    appended to ``calls`` so tests can count lookups, creates and uploads.
    """

    def __init__(self, config: DriveConfig | None = None, connected: bool = False) -> None:
        self.config = config or DriveConfig()
        self.connected = connected
        self.folders: dict[tuple[str | None, str], str] = {}
        self.uploads: list[tuple[str, bytes, str, str]] = []
        self.calls: list[tuple[str, str]] = []
        self.failures: list[Exception] = []
        self._connect: list[Callable[[], None]] = []
        self._disconnect: list[Callable[[], None]] = []

    def fail_next(self, *errors: Exception) -> None:
        self.failures.extend(errors)

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    def set_access_token(self, token: str, expires_in: float = 3600) -> None:
        self.connected = True
        for callback in list(self._connect):
            callback()

    def restore_session(self) -> bool:
        return self.connected

    def is_connected(self) -> bool:
        return self.connected

    def disconnect(self) -> None:
        self.connected = False
        for callback in list(self._disconnect):
            callback()

    def on_connect(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._connect.append(callback)
        return lambda: self._connect.remove(callback)

    def on_disconnect(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._disconnect.append(callback)
        return lambda: self._disconnect.remove(callback)

    def _call(self, method: str, name: str) -> None:
        self.calls.append((method, name))
        if self.failures:
            raise self.failures.pop(0)

    def find_folder(self, name: str, parent_id: str | None = None) -> dict[str, Any] | None:
        self._call("find_folder", name)
        folder_id = self.folders.get((parent_id, name))
        return {"id": folder_id, "name": name} if folder_id else None

    def create_folder(self, name: str, parent_id: str | None = None) -> dict[str, Any]:
        self._call("create_folder", name)
        folder_id = f"folder-{len(self.folders) + 1}"
        self.folders[(parent_id, name)] = folder_id
        return {"id": folder_id, "name": name}

    def upload_file(
        self, content: bytes, filename: str, parent_id: str, mime_type: str | None = None
    ) -> dict[str, Any]:
        self._call("upload_file", filename)
        self.uploads.append((filename, content, parent_id, mime_type or self.config.mime_type))
        return {"id": f"file-{len(self.uploads)}", "name": filename}

    def search_files(self, pattern: str, parent_id: str) -> list[dict[str, Any]]:
        self._call("search_files", pattern)
        return [
            {"id": f"file-{i}", "name": name}
            for i, (name, _, parent, _) in enumerate(self.uploads, 1)
            if pattern in name and parent == parent_id
        ]

    def delete_file(self, file_id: str) -> bool:
        self._call("delete_file", file_id)
        return True
