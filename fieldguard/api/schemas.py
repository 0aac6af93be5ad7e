"""
Request and response models for the instant-edit HTTP API.
"""

from pydantic import BaseModel, field_validator, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    undo_available: bool
    pending_count: int


class RecordResponse(BaseModel):
    id: str
    category: str
    urgency: str
    action: str
    version: int
    updated_at: Optional[datetime] = None


class ConflictFieldModel(BaseModel):
    field_name: str
    base_value: str
    client_value: str
    server_value: str
    can_auto_merge: bool = False
    description: str


class ServerChangeModel(BaseModel):
    field: str
    from_value: Optional[str] = None
    to_value: str


class SessionResponse(BaseModel):
    record_id: str
    status: str
    original_version: int
    original_fields: Dict[str, Optional[str]]
    current_fields: Dict[str, Optional[str]]
    dirty_fields: List[str]
    conflicts: List[ConflictFieldModel] = []
    last_error: Optional[str] = None
    draft_available: bool = False


class FieldUpdateRequest(BaseModel):
    value: str
    previous_value: Optional[str] = None

    @field_validator('value')
    @classmethod
    def value_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v


class SaveResponse(BaseModel):
    record_id: str
    field: str
    status: str
    success: bool
    new_version: Optional[int] = None
    conflicts: List[ConflictFieldModel] = []
    server_changes: List[ServerChangeModel] = []
    error: Optional[str] = None
    retryable: bool = False
    discarded: bool = False


class ResolveConflictRequest(BaseModel):
    resolutions: Dict[str, str]

    @field_validator('resolutions')
    @classmethod
    def resolutions_must_be_valid(cls, v):
        if not v:
            raise ValueError('resolutions cannot be empty')
        valid_choices = ['client', 'server']
        for field, choice in v.items():
            if choice not in valid_choices:
                raise ValueError(f'resolution for {field} must be one of: {valid_choices}')
        return v


class ResolveConflictResponse(BaseModel):
    record_id: str
    results: List[SaveResponse]


class UndoStatusResponse(BaseModel):
    can_undo: bool
    state: str
    time_remaining: int
    description: Optional[str] = None


class UndoExecuteResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    restored_records: List[str] = []


class DraftResponse(BaseModel):
    row_id: str
    data: Dict[str, str]
    saved_at: datetime
    version: int


class StorageStatsResponse(BaseModel):
    total_keys: int
    app_keys: int
    total_bytes: int
    app_bytes: int
    draft_count: int
    pending_count: int


class CleanupResponse(BaseModel):
    keys_removed: int
    removed_keys: List[str]
    bytes_freed: int


class PendingSubmissionModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    record_id: str
    updates: Dict[str, str]
    expected_version: int
    queued_at: datetime
    attempts: int
    last_error: Optional[str] = None


class PendingListResponse(BaseModel):
    submissions: List[PendingSubmissionModel]
    size: int
    has_exhausted: bool
    last_processed_at: Optional[datetime] = None


class SubmissionResultModel(BaseModel):
    id: str
    success: bool
    error: Optional[str] = None
    conflict: bool = False
    retryable: bool = False


class DrainResponse(BaseModel):
    results: List[SubmissionResultModel]
    remaining: int


class MessageResponse(BaseModel):
    success: bool
    detail: Optional[Any] = None
