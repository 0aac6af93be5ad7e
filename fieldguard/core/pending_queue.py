"""
Offline queue for writes captured while the remote store was unreachable.

Submissions are persisted in local storage next to the drafts and drained
oldest-first once connectivity returns.
"""

import json
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from . import config
from .drafts import DraftStore
from .errors import FieldGuardError, NetworkFailure, VersionConflict
from .schema import PendingSubmission, SubmissionResult
from ..util.logging import logger

SubmitFn = Callable[[PendingSubmission], Awaitable[None]]


class PendingQueue:
    """Persistent queue of pending submissions.

    The submit callable passed to drain() returns normally on success and
    raises NetworkFailure (retry later) or VersionConflict (surface to the
    user). Any other FieldGuardError marks the submission as exhausted.
    """

    def __init__(self, drafts: DraftStore, max_attempts: Optional[int] = None,
                 max_size: Optional[int] = None):
        self.drafts = drafts
        self.max_attempts = max_attempts or config.PENDING_MAX_ATTEMPTS
        self.max_size = max_size or config.MAX_PENDING_QUEUE_SIZE
        self.is_processing = False

    # Persistence

    def _load(self) -> Dict:
        raw = self.drafts.storage.get_item(self.drafts.pending_key())
        if not raw:
            return {"submissions": [], "last_processed_at": None}
        try:
            data = json.loads(raw)
        except ValueError as e:
            # Left in place for cleanup_stale_storage to purge
            logger.warning(f"Pending queue unreadable, treating as empty: {e}")
            return {"submissions": [], "last_processed_at": None}

        items = data.get("submissions") if isinstance(data, dict) else data
        if not isinstance(items, list):
            logger.warning("Pending queue has no submissions list, treating as empty")
            return {"submissions": [], "last_processed_at": None}

        submissions = []
        for item in items:
            try:
                submissions.append(PendingSubmission.from_dict(item))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed pending submission: {e!r}")

        last_processed_at = data.get("last_processed_at") if isinstance(data, dict) else None
        return {"submissions": submissions, "last_processed_at": last_processed_at}

    def _save(self, submissions: List[PendingSubmission], last_processed_at: Optional[str] = None):
        if last_processed_at is None:
            last_processed_at = self._load()["last_processed_at"]
        payload = {
            "submissions": [sub.to_dict() for sub in submissions],
            "last_processed_at": last_processed_at
        }
        self.drafts.storage.set_item(self.drafts.pending_key(), json.dumps(payload))

    # Queue operations

    def list(self) -> List[PendingSubmission]:
        return sorted(self._load()["submissions"], key=lambda sub: sub.queued_at)

    def get(self, submission_id: str) -> Optional[PendingSubmission]:
        return next((sub for sub in self.list() if sub.id == submission_id), None)

    @property
    def size(self) -> int:
        return len(self.list())

    @property
    def last_processed_at(self) -> Optional[datetime]:
        value = self._load()["last_processed_at"]
        return datetime.fromisoformat(value) if value else None

    def is_exhausted(self, submission: PendingSubmission) -> bool:
        return submission.attempts >= self.max_attempts

    def has_exhausted(self) -> bool:
        return any(self.is_exhausted(sub) for sub in self.list())

    def enqueue(self, record_id: str, updates: Mapping[str, str], expected_version: int,
                error: Optional[str] = None, base: Optional[Mapping[str, str]] = None) -> PendingSubmission:
        """Add a submission; the oldest entry is evicted when the queue is full."""
        now = self.drafts.now()
        submission = PendingSubmission(
            id=f"{record_id}-{int(now.timestamp() * 1000)}",
            record_id=str(record_id),
            updates=dict(updates),
            expected_version=int(expected_version),
            queued_at=now,
            last_error=error,
            base=dict(base) if base else None
        )

        submissions = self.list()
        # Same-millisecond enqueues for one record would otherwise share an id
        taken = {sub.id for sub in submissions}
        suffix = 1
        while submission.id in taken:
            submission.id = f"{record_id}-{int(now.timestamp() * 1000)}-{suffix}"
            suffix += 1

        submissions.append(submission)
        while len(submissions) > self.max_size:
            evicted = submissions.pop(0)
            logger.log_queue("evicted", evicted.id, "rejected", {"reason": "queue full"})

        self._save(submissions)
        logger.log_queue("enqueued", submission.id, details={"record_id": submission.record_id})
        return submission

    def remove(self, submission_id: str) -> bool:
        submissions = self.list()
        remaining = [sub for sub in submissions if sub.id != submission_id]
        if len(remaining) == len(submissions):
            return False
        self._save(remaining)
        logger.log_queue("removed", submission_id)
        return True

    def clear(self) -> None:
        self._save([])
        logger.log_queue("cleared")

    def retry(self, submission_id: str) -> bool:
        """Reset an exhausted submission so the next drain attempts it again."""
        submissions = self.list()
        for sub in submissions:
            if sub.id == submission_id:
                sub.attempts = 0
                self._save(submissions)
                logger.log_queue("retry_requested", submission_id)
                return True
        return False

    async def drain(self, submit: SubmitFn) -> List[SubmissionResult]:
        """
        Submit queued writes oldest-first.

        Successful and conflicting submissions leave the queue; a conflict is
        reported back so the caller can surface it as a normal save conflict.
        A network failure stops the drain, since later submissions would fail
        the same way. Exhausted submissions stay queued with last_error set.
        """
        if self.is_processing:
            return []

        self.is_processing = True
        results: List[SubmissionResult] = []
        try:
            for submission in self.list():
                if self.is_exhausted(submission):
                    continue

                result = await self._process(submission, submit)
                results.append(result)
                if result.retryable:
                    break
        finally:
            self.is_processing = False
            self._save(self.list(), last_processed_at=self.drafts.now().isoformat())

        return results

    async def _process(self, submission: PendingSubmission, submit: SubmitFn) -> SubmissionResult:
        submission.attempts += 1
        logger.log_queue("processing", submission.id, "started", {"attempt": submission.attempts})

        try:
            await submit(submission)
        except VersionConflict as e:
            self.remove(submission.id)
            logger.log_queue("conflict", submission.id, "conflict",
                             {"fields": [c.field_name for c in e.conflicts]})
            return SubmissionResult(id=submission.id, success=False, error=str(e),
                                    conflict=True, conflicts=e.conflicts)
        except NetworkFailure as e:
            submission.last_error = str(e)
            self._update(submission)
            logger.log_queue("processing", submission.id, "offline", {"error": str(e)})
            return SubmissionResult(id=submission.id, success=False, error=str(e), retryable=True)
        except FieldGuardError as e:
            submission.last_error = str(e)
            submission.attempts = max(submission.attempts, self.max_attempts)
            self._update(submission)
            logger.log_queue("processing", submission.id, "failed", {"error": str(e)})
            return SubmissionResult(id=submission.id, success=False, error=str(e))

        self.remove(submission.id)
        logger.log_queue("submitted", submission.id)
        return SubmissionResult(id=submission.id, success=True)

    def _update(self, submission: PendingSubmission) -> None:
        submissions = [submission if sub.id == submission.id else sub for sub in self.list()]
        self._save(submissions)
