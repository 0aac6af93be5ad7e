"""
Shared fixtures: temporary record store, in-memory local storage and
controllable clocks.
"""

from datetime import datetime, timedelta

import pytest

from fieldguard.core.drafts import DraftStore
from fieldguard.core.edit_session import EditSessionController
from fieldguard.core.errors import NetworkFailure
from fieldguard.core.notifications import NotificationCenter
from fieldguard.core.pending_queue import PendingQueue
from fieldguard.core.remote import SQLiteRecordStore
from fieldguard.core.storage import MemoryStorage
from fieldguard.core.undo import UndoManager


class FakeClock:
    """Monotonic clock for the undo window."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float):
        self.value += seconds


class FakeNow:
    """Wall clock for draft and queue timestamps."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.value = start

    def __call__(self) -> datetime:
        return self.value

    def advance(self, **kwargs):
        self.value += timedelta(**kwargs)


class FlakyStore(SQLiteRecordStore):
    """Record store that can be switched offline, gated, and records every write."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.offline = False
        self.gate = None  # asyncio.Event holding writes until set
        self.writes = []

    async def read_record(self, record_id):
        if self.offline:
            raise NetworkFailure("Network request failed")
        return await super().read_record(record_id)

    async def write_field(self, record_id, field, value, expected_version):
        if self.gate is not None:
            await self.gate.wait()
        self.writes.append((record_id, field, value, expected_version))
        if self.offline:
            raise NetworkFailure("Network request failed")
        return await super().write_field(record_id, field, value, expected_version)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def now():
    return FakeNow()


@pytest.fixture
def store(tmp_path):
    store = FlakyStore(str(tmp_path / "records.db"))
    store.create_record("rec-1", {"category": "WORK", "urgency": "MEDIUM", "action": "FYI"})
    store.create_record("rec-2", {"category": "KIDS", "urgency": "LOW", "action": "IGNORE"})
    store.create_record("rec-3", {"category": "CHURCH", "urgency": "LOW", "action": "TASK"})
    return store


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def drafts(storage, now):
    return DraftStore(storage, now=now)


@pytest.fixture
def pending(drafts):
    return PendingQueue(drafts)


@pytest.fixture
def undo_manager(store, clock):
    return UndoManager(store, window=30, clock=clock)


@pytest.fixture
def notifications():
    return NotificationCenter()


@pytest.fixture
def controller(store, undo_manager, drafts, pending, notifications):
    return EditSessionController(store, undo_manager, drafts,
                                 pending_queue=pending, notifications=notifications)
