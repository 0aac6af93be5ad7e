"""
Edit session controller: instant per-field saves with optimistic updates,
version-checked writes, silent auto-merge, undo registration and offline
fallback.

Each record being edited has one EditSession. Its original_fields and
original_version are the base the merge engine compares against; they are
rebased after every confirmed write.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from . import config
from .drafts import DraftStore
from .enums import FIELD_LABELS, value_label
from .errors import FieldGuardError, NetworkFailure, RecordNotFoundError, VersionConflict
from .merge import all_conflicts_resolved, apply_resolutions, get_server_changes, merge
from .notifications import NotificationCenter, SaveNotification
from .pending_queue import PendingQueue
from .remote import RemoteRecordStore
from .schema import (
    DraftEntry, EditSession, MergeResult, OptimisticState, PendingSubmission, SaveResult,
    SessionStatus, SubmissionResult, UndoChange, UndoResult, VersionedRecord,
)
from .undo import UndoManager
from .validation import validate_field_value
from ..util.logging import logger


@dataclass
class _WriteOutcome:
    """Result of a write that may have gone through one or more auto-merges."""
    new_version: Optional[int] = None
    value: Optional[str] = None  # what the record now holds for the field
    conflict: Optional[MergeResult] = None
    server: Optional[VersionedRecord] = None

    @property
    def exhausted(self) -> bool:
        return self.new_version is None and self.conflict is None


def describe_change(field: str, value: str) -> str:
    return f"Changed {FIELD_LABELS.get(field, field)} to {value_label(field, value)}"


class EditSessionController:
    """Coordinates instant saves for every record being edited."""

    def __init__(self, store: RemoteRecordStore, undo_manager: UndoManager, drafts: DraftStore,
                 pending_queue: Optional[PendingQueue] = None,
                 notifications: Optional[NotificationCenter] = None,
                 max_merge_retries: Optional[int] = None):
        self.store = store
        self.undo_manager = undo_manager
        self.drafts = drafts
        self.pending_queue = pending_queue
        self.notifications = notifications
        self.max_merge_retries = max_merge_retries if max_merge_retries is not None else config.MAX_MERGE_RETRIES
        self._sessions: Dict[str, EditSession] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    # Session lifecycle

    async def begin_session(self, record_id: str) -> EditSession:
        """Load the record and start (or restart) editing it."""
        record_id = str(record_id)
        record = await self.store.read_record(record_id)

        previous = self._sessions.get(record_id)
        if previous is not None:
            previous.cancelled = True

        session = EditSession(
            record_id=record_id,
            original_fields=dict(record.fields),
            current_fields=dict(record.fields),
            original_version=record.version,
            status=SessionStatus.EDITING
        )
        self._sessions[record_id] = session
        logger.log_operation("edit.session_begin", "success", {"record_id": record_id, "version": record.version})
        return session

    def end_session(self, record_id: str) -> bool:
        """
        Navigate away from a record.

        In-flight writes still complete but their results are discarded, and
        any undo entry touching the record is dropped.
        """
        record_id = str(record_id)
        session = self._sessions.pop(record_id, None)
        if session is None:
            return False

        session.cancelled = True
        self.undo_manager.clear_for_record(record_id)

        # Held locks belong to in-flight writes and are dropped by the next end_session
        for key in [key for key, lock in self._locks.items() if key[0] == record_id and not lock.locked()]:
            del self._locks[key]

        snapshot = self.drafts.get_session_snapshot()
        if snapshot and snapshot.editing_row_id == record_id:
            self.drafts.clear_session_snapshot()

        logger.log_operation("edit.session_end", "success", {"record_id": record_id})
        return True

    def get_session(self, record_id: str) -> Optional[EditSession]:
        return self._sessions.get(str(record_id))

    def snapshot_session(self, record_id: str, return_url: str = ""):
        """Persist the session's edit state so it survives an interruption."""
        session = self._require_session(record_id)
        return self.drafts.save_session_snapshot(session.record_id, session.current_fields,
                                                 session.original_version, return_url)

    def recover_draft(self, record_id: str) -> Optional[DraftEntry]:
        return self.drafts.get_draft(str(record_id))

    # Saving

    async def instant_save(self, record_id: str, field: str, new_value: str,
                           previous_value: Optional[str] = None) -> SaveResult:
        """
        Save one field immediately.

        The value is validated and applied to the session before the first
        network round-trip. Starts a session if the record has none.

        Raises:
            ValidationFailure: field or value outside the allowed sets
        """
        record_id = str(record_id)
        value = validate_field_value(field, new_value)

        session = self._sessions.get(record_id)
        if session is None:
            session = await self.begin_session(record_id)

        if previous_value is None:
            previous_value = session.current_fields.get(field)

        result = await self._save_field(session, field, value, previous_value)
        if result.success:
            change = UndoChange(record_id=record_id, field=field, previous_value=previous_value, new_value=value)
            self._register_undo("single", [change], describe_change(field, value), record_id)
        return result

    async def bulk_save(self, record_ids: Sequence[str], field: str, new_value: str) -> List[SaveResult]:
        """Apply one field value to several records under a single undo entry."""
        value = validate_field_value(field, new_value)

        sessions = []
        for record_id in record_ids:
            session = self._sessions.get(str(record_id))
            if session is None:
                session = await self.begin_session(str(record_id))
            sessions.append(session)

        previous_values = [session.current_fields.get(field) for session in sessions]
        results = await asyncio.gather(*[
            self._save_field(session, field, value, previous)
            for session, previous in zip(sessions, previous_values)
        ])

        changes = [
            UndoChange(record_id=result.record_id, field=field, previous_value=previous, new_value=value)
            for result, previous in zip(results, previous_values)
            if result.success
        ]
        if changes:
            description = f"{describe_change(field, value)} on {len(changes)} records"
            self._register_undo("bulk", changes, description, changes[0].record_id)

        logger.log_operation("edit.bulk_save", "success" if len(changes) == len(results) else "partial", {
            "field": field,
            "records": len(results),
            "saved": len(changes)
        })
        return list(results)

    async def _save_field(self, session: EditSession, field: str, value: str,
                          previous_value: Optional[str]) -> SaveResult:
        record_id = session.record_id

        # Optimistic update, visible before any await
        session.current_fields[field] = value
        session.dirty_fields.add(field)
        session.field_states[field] = OptimisticState.PENDING
        session.status = SessionStatus.SAVING
        session.last_error = None
        self.drafts.save_draft(record_id, session.current_fields, session.original_version)
        logger.log_save(record_id, field, value, "started", {"expected_version": session.original_version})

        async with self._lock_for(record_id, field):
            expected_version = session.original_version
            try:
                outcome = await self._write_merged(record_id, field, value, expected_version,
                                                   dict(session.original_fields))
            except NetworkFailure as e:
                if self._is_stale(session):
                    return self._discarded(record_id, field)
                return self._handle_offline(session, field, value, previous_value, expected_version, e)
            except FieldGuardError as e:
                if self._is_stale(session):
                    return self._discarded(record_id, field)
                self._roll_back(session, field, value, previous_value)
                self._sync_draft(session)
                session.status = SessionStatus.ERROR
                session.last_error = str(e)
                logger.log_save(record_id, field, value, "failed", {"error": str(e)})
                return SaveResult(record_id=record_id, field=field, status=SessionStatus.ERROR, error=str(e))

            if self._is_stale(session):
                return self._discarded(record_id, field, outcome.new_version)

            if outcome.conflict is not None:
                return self._handle_conflict(session, field, value, previous_value, expected_version, outcome)

            if outcome.exhausted:
                self._roll_back(session, field, value, previous_value)
                self._sync_draft(session)
                session.status = SessionStatus.ERROR
                session.last_error = (f"Record {record_id} kept changing; "
                                      f"gave up after {self.max_merge_retries} merge attempts")
                logger.log_save(record_id, field, value, "failed", {"error": session.last_error})
                return SaveResult(record_id=record_id, field=field, status=SessionStatus.ERROR,
                                  error=session.last_error, retryable=True)

            return self._handle_saved(session, field, value, outcome)

    async def _write_merged(self, record_id: str, field: str, value: str, expected_version: Optional[int],
                            base: Mapping[str, str]) -> _WriteOutcome:
        """
        Conditional write with silent auto-merge.

        On a version mismatch the current record is merged against base; a clean
        merge re-issues the write at the server's version, up to
        max_merge_retries times.
        """
        server: Optional[VersionedRecord] = None

        for _ in range(self.max_merge_retries + 1):
            write = await self.store.write_field(record_id, field, value, expected_version)
            if write.success:
                return _WriteOutcome(new_version=write.new_version, value=value, server=server)

            server = write.current or await self.store.read_record(record_id)
            result = merge(base, {field: value}, server.fields)
            if not result.success:
                return _WriteOutcome(conflict=result, server=server)

            server_value = server.fields.get(field)
            if field not in result.merged or server_value == result.merged[field]:
                # Nothing left to write: converged, or no effective change against base
                return _WriteOutcome(new_version=server.version, value=server_value, server=server)

            logger.log_merge(record_id, list(result.merged), server.version)
            expected_version = server.version

        return _WriteOutcome(server=server)

    def _handle_saved(self, session: EditSession, field: str, value: str, outcome: _WriteOutcome) -> SaveResult:
        record_id = session.record_id
        server_changes = []

        if outcome.server is not None:
            server_changes = get_server_changes(session.original_fields, outcome.server.fields)
            self._adopt_server_fields(session, outcome.server, skip={field})

        # Rebase on the confirmed write
        session.original_fields[field] = outcome.value
        session.original_version = outcome.new_version
        if session.current_fields.get(field) == value:
            session.current_fields[field] = outcome.value
            session.dirty_fields.discard(field)
            session.field_states[field] = OptimisticState.CONFIRMED

        if not session.is_dirty:
            session.status = SessionStatus.SAVED
        self._sync_draft(session)

        logger.log_save(record_id, field, outcome.value, "success", {"version": outcome.new_version})
        return SaveResult(record_id=record_id, field=field, status=SessionStatus.SAVED,
                          new_version=outcome.new_version,
                          server_changes=[c for c in server_changes if c.field != field])

    def _handle_conflict(self, session: EditSession, field: str, value: str, previous_value: Optional[str],
                         expected_version: int, outcome: _WriteOutcome) -> SaveResult:
        self._roll_back(session, field, value, previous_value)
        session.status = SessionStatus.CONFLICT
        session.conflict = outcome.conflict
        session.conflict_record = outcome.server

        logger.log_conflict(session.record_id, outcome.conflict.conflicts, expected_version, outcome.server.version)
        return SaveResult(
            record_id=session.record_id,
            field=field,
            status=SessionStatus.CONFLICT,
            conflicts=list(outcome.conflict.conflicts),
            server_changes=get_server_changes(session.original_fields, outcome.server.fields)
        )

    def _handle_offline(self, session: EditSession, field: str, value: str, previous_value: Optional[str],
                        expected_version: int, error: NetworkFailure) -> SaveResult:
        record_id = session.record_id
        self._roll_back(session, field, value, previous_value)
        session.status = SessionStatus.OFFLINE
        session.last_error = str(error)

        attempted = {**session.current_fields, field: value}
        self.drafts.save_draft(record_id, attempted, expected_version)
        if self.pending_queue is not None:
            self.pending_queue.enqueue(record_id, {field: value}, expected_version,
                                       error=str(error), base=session.original_fields)

        logger.log_save(record_id, field, value, "offline", {"error": str(error)})
        return SaveResult(record_id=record_id, field=field, status=SessionStatus.OFFLINE,
                          error=str(error), retryable=True)

    # Conflict resolution

    async def resolve_conflict(self, record_id: str, resolutions: Mapping[str, str]) -> List[SaveResult]:
        """
        Apply the caller's choice for each conflicting field.

        'server' adopts the concurrent value without writing; 'client' re-saves
        the user's value against the current server version.
        """
        session = self._require_session(record_id)
        if session.conflict is None or session.conflict_record is None:
            raise ValueError(f"No conflict to resolve for record {record_id}")
        if not all_conflicts_resolved(session.conflict.conflicts, resolutions):
            raise ValueError("Every conflicting field needs a resolution")

        payload = apply_resolutions(session.conflict, resolutions)
        server = session.conflict_record

        # Rebase on the server state the conflict was detected against
        self._adopt_server_fields(session, server, skip=set())
        session.original_version = server.version
        session.conflict = None
        session.conflict_record = None
        session.status = SessionStatus.EDITING
        logger.log_operation("edit.conflict_resolved", "success", {
            "record_id": session.record_id,
            "resolutions": dict(resolutions)
        })

        results = []
        for field, value in payload.items():
            if server.fields.get(field) == value:
                continue
            results.append(await self.instant_save(session.record_id, field, value,
                                                   previous_value=server.fields.get(field)))

        if not results and not session.is_dirty:
            self.drafts.remove_draft(session.record_id)
        return results

    # Offline queue

    async def retry_pending(self) -> List[SubmissionResult]:
        """Drain the pending queue; call when connectivity is restored."""
        if self.pending_queue is None:
            return []
        return await self.pending_queue.drain(self._submit_pending)

    async def _submit_pending(self, submission: PendingSubmission) -> None:
        expected_version = submission.expected_version
        base = submission.base or {}

        for field, value in submission.updates.items():
            outcome = await self._write_merged(submission.record_id, field, value, expected_version, base)
            if outcome.conflict is not None:
                session = self._sessions.get(submission.record_id)
                if session is not None:
                    session.status = SessionStatus.CONFLICT
                    session.conflict = outcome.conflict
                    session.conflict_record = outcome.server
                logger.log_conflict(submission.record_id, outcome.conflict.conflicts,
                                    expected_version, outcome.server.version)
                raise VersionConflict(submission.record_id, outcome.conflict.conflicts)
            if outcome.exhausted:
                raise NetworkFailure(f"Record {submission.record_id} kept changing during retry")
            expected_version = outcome.new_version

        self.drafts.remove_draft(submission.record_id)
        session = self._sessions.get(submission.record_id)
        if session is not None:
            await self._refresh_session(session)

    # Undo

    async def undo(self) -> UndoResult:
        """Execute the pending undo and bring affected sessions up to date."""
        entry = self.undo_manager.entry
        result = await self.undo_manager.execute_undo()

        if entry is not None:
            for record_id in result.restored_records:
                session = self._sessions.get(record_id)
                if session is not None:
                    await self._refresh_session(session)
        return result

    def _register_undo(self, kind: str, changes: List[UndoChange], description: str, record_id: str) -> None:
        entry = self.undo_manager.create_entry(kind, changes, description)
        self.undo_manager.record_change(entry)

        if self.notifications is not None:
            self.notifications.publish(SaveNotification(
                message=description,
                record_id=record_id,
                on_undo=self.undo,
                duration_sec=self.undo_manager.window
            ))

    # Helpers

    def _require_session(self, record_id: str) -> EditSession:
        session = self._sessions.get(str(record_id))
        if session is None:
            raise RecordNotFoundError(record_id)
        return session

    def _lock_for(self, record_id: str, field: str) -> asyncio.Lock:
        key = (record_id, field)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _sync_draft(self, session: EditSession) -> None:
        """Keep the local draft in step with unsaved edits; drop it once the session is clean."""
        if session.is_dirty:
            self.drafts.save_draft(session.record_id, session.current_fields, session.original_version)
        else:
            self.drafts.remove_draft(session.record_id)

    def _is_stale(self, session: EditSession) -> bool:
        return session.cancelled or self._sessions.get(session.record_id) is not session

    def _discarded(self, record_id: str, field: str, new_version: Optional[int] = None) -> SaveResult:
        logger.debug(f"Discarding save result for {record_id}.{field}: session ended")
        return SaveResult(record_id=record_id, field=field, status=SessionStatus.IDLE,
                          new_version=new_version, discarded=True)

    @staticmethod
    def _roll_back(session: EditSession, field: str, value: str, previous_value: Optional[str]) -> None:
        # A newer optimistic value for the same field stays in place
        if session.current_fields.get(field) == value:
            session.current_fields[field] = previous_value
            session.dirty_fields.discard(field)
            session.field_states[field] = OptimisticState.ROLLED_BACK

    @staticmethod
    def _adopt_server_fields(session: EditSession, server: VersionedRecord, skip) -> None:
        """Take server values for fields the user has no edit in flight on."""
        for field, server_value in server.fields.items():
            if field in skip or field in session.dirty_fields:
                continue
            session.original_fields[field] = server_value
            session.current_fields[field] = server_value

    async def _refresh_session(self, session: EditSession) -> None:
        try:
            record = await self.store.read_record(session.record_id)
        except FieldGuardError as e:
            logger.warning(f"Could not refresh session for record {session.record_id}: {e}")
            return

        self._adopt_server_fields(session, record, skip=set())
        if not session.is_dirty:
            session.original_version = record.version
            if session.status in (SessionStatus.OFFLINE, SessionStatus.SAVED):
                session.status = SessionStatus.EDITING
