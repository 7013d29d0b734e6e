"""Shared fixtures for fieldsync tests."""

from __future__ import annotations

import pytest

from fieldsync.core.config import EngineConfig
from fieldsync.core.storage import MemoryStore
from fieldsync.status import StatusNotifier
from fieldsync.sync.engine import RecordSyncEngine
from tests.fakes import ManualTimers, RecordingRemote

DEVICE_ID = "device-test"


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier() -> StatusNotifier:
    return StatusNotifier()


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def remote() -> RecordingRemote:
    return RecordingRemote()


@pytest.fixture
def engine(
    remote: RecordingRemote,
    store: MemoryStore,
    notifier: StatusNotifier,
    timers: ManualTimers,
) -> RecordSyncEngine:
    """An offline engine with manual retry timers."""
    engine = RecordSyncEngine(
        remote,
        store,
        EngineConfig(device_id=DEVICE_ID),
        notifier=notifier,
        timer_factory=timers,
    )
    engine.load()
    return engine
