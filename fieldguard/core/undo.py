"""
Single-level undo with a time-boxed window.

One UndoManager is created per application and handed to every consumer. It
holds at most one entry; recording a new change replaces the previous one.
Expiry is evaluated lazily against an injectable monotonic clock.
"""

import math
import time
import uuid
from typing import Callable, Iterable, List, Optional

from . import config
from .errors import FieldGuardError, UndoFailure
from .remote import RemoteRecordStore
from .schema import UndoChange, UndoEntry, UndoResult, UndoState
from ..util.logging import logger

NOTHING_TO_UNDO = "Nothing to undo"
UNDO_IN_PROGRESS = "Undo already in progress"
UNDO_EXPIRED = "Undo has expired"


class UndoManager:
    """Owns the undo slot: EMPTY -> PENDING -> UNDOING -> EMPTY (or back to PENDING on failure)."""

    def __init__(self, store: RemoteRecordStore, window: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.window = window if window is not None else config.get_undo_window()
        self.clock = clock
        self._entry: Optional[UndoEntry] = None
        self._undoing = False

    def create_entry(self, kind: str, changes: Iterable[UndoChange], description: str) -> UndoEntry:
        """Build an entry stamped with the current clock."""
        return UndoEntry(
            id=f"undo-{uuid.uuid4().hex[:12]}",
            kind=kind,
            timestamp=self.clock(),
            changes=list(changes),
            description=description
        )

    def record_change(self, entry: UndoEntry) -> UndoEntry:
        """Make entry the undoable operation, replacing any previous one."""
        if self._entry is not None:
            logger.log_undo("replaced", self._entry.id)
        self._entry = entry
        logger.log_undo("recorded", entry.id, details={
            "kind": entry.kind,
            "records": entry.record_ids(),
            "window_sec": self.window
        })
        return entry

    # Slot inspection

    def _expired(self) -> bool:
        return self._entry is not None and self.clock() - self._entry.timestamp >= self.window

    def _expire_if_due(self) -> None:
        if not self._undoing and self._expired():
            logger.log_undo("expired", self._entry.id)
            self._entry = None

    @property
    def entry(self) -> Optional[UndoEntry]:
        self._expire_if_due()
        return self._entry

    @property
    def state(self) -> UndoState:
        if self._undoing:
            return UndoState.UNDOING
        return UndoState.PENDING if self.entry is not None else UndoState.EMPTY

    @property
    def can_undo(self) -> bool:
        return self.state == UndoState.PENDING

    @property
    def is_undoing(self) -> bool:
        return self._undoing

    @property
    def time_remaining(self) -> int:
        """Whole seconds left in the window, rounded up; 0 when nothing is undoable."""
        entry = self.entry
        if entry is None:
            return 0
        remaining = self.window - (self.clock() - entry.timestamp)
        return max(0, math.ceil(remaining))

    @property
    def undo_description(self) -> Optional[str]:
        entry = self.entry
        return entry.description if entry else None

    # Execution

    async def execute_undo(self) -> UndoResult:
        """
        Restore every change in the current entry with a blind write.

        On full success the slot is cleared. If any restore fails the entry is
        kept so the user may retry, and the records already restored are
        reported in restored_records.
        """
        if self._undoing:
            return UndoResult(success=False, error=UNDO_IN_PROGRESS)

        if self._entry is None:
            return UndoResult(success=False, error=NOTHING_TO_UNDO)

        if self._expired():
            self._expire_if_due()
            return UndoResult(success=False, error=UNDO_EXPIRED)

        entry = self._entry
        self._undoing = True
        restored: List[str] = []
        failures: List[str] = []

        try:
            for change in entry.changes:
                try:
                    await self._restore(change)
                    if change.record_id not in restored:
                        restored.append(change.record_id)
                except UndoFailure as e:
                    failures.append(str(e))
        finally:
            self._undoing = False

        if failures:
            logger.log_undo("executed", entry.id, "failed", {
                "restored": restored,
                "errors": failures
            })
            return UndoResult(success=False, error="; ".join(failures), restored_records=restored)

        if self._entry is entry:
            self._entry = None
        logger.log_undo("executed", entry.id, details={"restored": restored})
        return UndoResult(success=True, restored_records=restored)

    async def _restore(self, change: UndoChange) -> None:
        try:
            result = await self.store.write_field(change.record_id, change.field,
                                                  change.previous_value, expected_version=None)
        except FieldGuardError as e:
            raise UndoFailure(f"Failed to restore {change.field} on record {change.record_id}: {e}") from e

        if not result.success:
            raise UndoFailure(f"Failed to restore {change.field} on record {change.record_id}")

    # Clearing

    def clear_undo(self) -> None:
        if self._entry is not None:
            logger.log_undo("cleared", self._entry.id)
        self._entry = None

    def clear_for_record(self, record_id: str) -> bool:
        """Drop the current entry if it touches record_id (navigation away)."""
        if self._entry is None or self._undoing:
            return False
        if str(record_id) not in self._entry.record_ids():
            return False
        self.clear_undo()
        return True
