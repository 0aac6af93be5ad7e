"""
Value objects shared by the merge engine, undo manager, draft store and
edit session controller.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class SessionStatus(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"
    SAVED = "saved"
    CONFLICT = "conflict"
    OFFLINE = "offline"
    ERROR = "error"


class OptimisticState(str, Enum):
    """Lifecycle of a single optimistic field update."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class UndoState(str, Enum):
    EMPTY = "empty"
    PENDING = "pending"
    UNDOING = "undoing"


@dataclass
class VersionedRecord:
    id: str
    fields: Dict[str, str]
    version: int
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "version": self.version, **self.fields}
        if self.updated_at:
            data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass
class WriteResult:
    """Outcome of a conditional write: either a new version or the current row."""
    success: bool
    new_version: Optional[int] = None
    conflict: bool = False
    current: Optional[VersionedRecord] = None


@dataclass
class ConflictField:
    field_name: str
    base_value: str
    client_value: str
    server_value: str
    can_auto_merge: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MergeResult:
    merged: Dict[str, str]
    conflicts: List[ConflictField]
    success: bool


@dataclass
class ServerChange:
    field: str
    from_value: str
    to_value: str


@dataclass
class UndoChange:
    record_id: str
    field: str
    previous_value: str
    new_value: str


@dataclass
class UndoEntry:
    id: str
    kind: str  # single, bulk
    timestamp: float
    changes: List[UndoChange]
    description: str

    def record_ids(self) -> List[str]:
        return [change.record_id for change in self.changes]


@dataclass
class UndoResult:
    success: bool
    error: Optional[str] = None
    restored_records: List[str] = field(default_factory=list)


@dataclass
class DraftEntry:
    row_id: str
    data: Dict[str, str]
    saved_at: datetime
    version: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        data = asdict(self)
        data['saved_at'] = self.saved_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'DraftEntry':
        """Create from dictionary (for loading from storage)."""
        return cls(
            row_id=str(data['row_id']),
            data=dict(data['data']),
            saved_at=datetime.fromisoformat(data['saved_at']),
            version=int(data['version'])
        )


@dataclass
class PendingSubmission:
    id: str
    record_id: str
    updates: Dict[str, str]
    expected_version: int
    queued_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None
    base: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['queued_at'] = self.queued_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'PendingSubmission':
        return cls(
            id=str(data['id']),
            record_id=str(data['record_id']),
            updates=dict(data['updates']),
            expected_version=int(data['expected_version']),
            queued_at=datetime.fromisoformat(data['queued_at']),
            attempts=int(data.get('attempts', 0)),
            last_error=data.get('last_error'),
            base=data.get('base')
        )


@dataclass
class SubmissionResult:
    id: str
    success: bool
    error: Optional[str] = None
    conflict: bool = False
    retryable: bool = False
    conflicts: List[ConflictField] = field(default_factory=list)


@dataclass
class SessionSnapshot:
    """Edit state kept across an interruption such as an auth redirect."""
    editing_row_id: str
    edit_data: Dict[str, str]
    original_version: int
    return_url: str
    saved_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['saved_at'] = self.saved_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'SessionSnapshot':
        return cls(
            editing_row_id=str(data['editing_row_id']),
            edit_data=dict(data['edit_data']),
            original_version=int(data['original_version']),
            return_url=data.get('return_url', ''),
            saved_at=datetime.fromisoformat(data['saved_at'])
        )


@dataclass
class CleanupResult:
    keys_removed: int = 0
    removed_keys: List[str] = field(default_factory=list)
    bytes_freed: int = 0


@dataclass
class StorageStats:
    total_keys: int = 0
    app_keys: int = 0
    total_bytes: int = 0
    app_bytes: int = 0
    draft_count: int = 0
    pending_count: int = 0


@dataclass
class EditSession:
    record_id: str
    original_fields: Dict[str, str]
    current_fields: Dict[str, str]
    original_version: int
    dirty_fields: Set[str] = field(default_factory=set)
    status: SessionStatus = SessionStatus.IDLE
    field_states: Dict[str, OptimisticState] = field(default_factory=dict)
    conflict: Optional[MergeResult] = None
    conflict_record: Optional[VersionedRecord] = None
    last_error: Optional[str] = None
    cancelled: bool = False

    @property
    def is_dirty(self) -> bool:
        return bool(self.dirty_fields)


@dataclass
class SaveResult:
    record_id: str
    field: str
    status: SessionStatus
    new_version: Optional[int] = None
    conflicts: List[ConflictField] = field(default_factory=list)
    server_changes: List[ServerChange] = field(default_factory=list)
    error: Optional[str] = None
    retryable: bool = False
    discarded: bool = False

    @property
    def success(self) -> bool:
        return self.status == SessionStatus.SAVED
