"""
HTTP surface for instant edits: sessions, field saves, conflict resolution,
undo, drafts, local storage upkeep and the offline queue.
"""

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
    HealthResponse,
    RecordResponse,
    ConflictFieldModel,
    ServerChangeModel,
    SessionResponse,
    FieldUpdateRequest,
    SaveResponse,
    ResolveConflictRequest,
    ResolveConflictResponse,
    UndoStatusResponse,
    UndoExecuteResponse,
    DraftResponse,
    StorageStatsResponse,
    CleanupResponse,
    PendingSubmissionModel,
    PendingListResponse,
    SubmissionResultModel,
    DrainResponse,
    MessageResponse
)
from ..core import config
from ..core.config import VERSION, debug_enabled, validate_config
from ..core.db import health_check
from ..core.drafts import DraftStore
from ..core.edit_session import EditSessionController
from ..core.errors import NetworkFailure, RecordNotFoundError, ValidationFailure
from ..core.merge import describe_conflict
from ..core.notifications import NotificationCenter
from ..core.pending_queue import PendingQueue
from ..core.remote import SQLiteRecordStore
from ..core.schema import EditSession, SaveResult, SessionStatus
from ..core.storage import LocalStorage, SQLiteStorage
from ..core.undo import UndoManager
from ..util.logging import logger


class AppContext:
    """Application-wide collaborators; one undo slot per application."""

    def __init__(self, db_path: Optional[str] = None, storage_path: Optional[str] = None,
                 storage: Optional[LocalStorage] = None):
        self.db_path = db_path
        self.store = SQLiteRecordStore(db_path)
        self.storage = storage or SQLiteStorage(storage_path)
        self.drafts = DraftStore(self.storage)
        self.pending = PendingQueue(self.drafts)
        self.undo = UndoManager(self.store)
        self.notifications = NotificationCenter()
        self.controller = EditSessionController(
            self.store, self.undo, self.drafts,
            pending_queue=self.pending,
            notifications=self.notifications
        )


_context: Optional[AppContext] = None


def get_context() -> AppContext:
    global _context
    if _context is None:
        _context = AppContext()
    return _context


@asynccontextmanager
async def lifespan(app: FastAPI):
    for issue in validate_config():
        logger.warning(f"Configuration issue: {issue}")

    ctx = app.dependency_overrides.get(get_context, get_context)()
    if config.CLEANUP_ON_STARTUP:
        ctx.drafts.cleanup_stale_storage()
    yield


# Initialize the FastAPI application
app = FastAPI(
    title="FieldGuard API",
    version=VERSION,
    description="Instant field edits with optimistic concurrency, auto-merge and undo",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan
)

# Add CORS middleware to allow frontend connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SAVE_STATUS_CODES = {
    SessionStatus.SAVED: 200,
    SessionStatus.IDLE: 200,
    SessionStatus.CONFLICT: 409,
    SessionStatus.OFFLINE: 503,
    SessionStatus.ERROR: 500,
}


def _session_response(ctx: AppContext, session: EditSession) -> SessionResponse:
    conflicts = session.conflict.conflicts if session.conflict else []
    return SessionResponse(
        record_id=session.record_id,
        status=session.status.value,
        original_version=session.original_version,
        original_fields=session.original_fields,
        current_fields=session.current_fields,
        dirty_fields=sorted(session.dirty_fields),
        conflicts=[ConflictFieldModel(**c.to_dict(), description=describe_conflict(c)) for c in conflicts],
        last_error=session.last_error,
        draft_available=ctx.drafts.get_draft(session.record_id) is not None
    )


def _save_response(result: SaveResult) -> SaveResponse:
    return SaveResponse(
        record_id=result.record_id,
        field=result.field,
        status=result.status.value,
        success=result.success,
        new_version=result.new_version,
        conflicts=[ConflictFieldModel(**c.to_dict(), description=describe_conflict(c)) for c in result.conflicts],
        server_changes=[ServerChangeModel(field=c.field, from_value=c.from_value, to_value=c.to_value)
                        for c in result.server_changes],
        error=result.error,
        retryable=result.retryable,
        discarded=result.discarded
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(ctx: AppContext = Depends(get_context)):
    """Check system health."""
    db_health = health_check(ctx.db_path)

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        undo_available=ctx.undo.can_undo,
        pending_count=ctx.pending.size
    )


# Records and edit sessions

@app.get("/records/{record_id}", response_model=RecordResponse)
async def get_record_endpoint(record_id: str, ctx: AppContext = Depends(get_context)):
    record = await ctx.store.read_record(record_id)
    return RecordResponse(id=record.id, version=record.version, updated_at=record.updated_at, **record.fields)


@app.post("/records/{record_id}/session", response_model=SessionResponse)
async def begin_session_endpoint(record_id: str, ctx: AppContext = Depends(get_context)):
    session = await ctx.controller.begin_session(record_id)
    return _session_response(ctx, session)


@app.get("/records/{record_id}/session", response_model=SessionResponse)
def get_session_endpoint(record_id: str, ctx: AppContext = Depends(get_context)):
    session = ctx.controller.get_session(record_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"No edit session for record {record_id}")
    return _session_response(ctx, session)


@app.delete("/records/{record_id}/session", response_model=MessageResponse)
def end_session_endpoint(record_id: str, ctx: AppContext = Depends(get_context)):
    if not ctx.controller.end_session(record_id):
        raise HTTPException(status_code=404, detail=f"No edit session for record {record_id}")
    return MessageResponse(success=True)


@app.put("/records/{record_id}/fields/{field}", response_model=SaveResponse)
async def save_field_endpoint(record_id: str, field: str, req: FieldUpdateRequest,
                              ctx: AppContext = Depends(get_context)):
    """Instantly save one field. Conflicts return 409, offline saves 503."""
    result = await ctx.controller.instant_save(record_id, field, req.value, req.previous_value)
    response = _save_response(result)
    status_code = SAVE_STATUS_CODES.get(result.status, 200)
    if status_code != 200:
        return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))
    return response


@app.post("/records/{record_id}/conflicts/resolve", response_model=ResolveConflictResponse)
async def resolve_conflict_endpoint(record_id: str, req: ResolveConflictRequest,
                                    ctx: AppContext = Depends(get_context)):
    try:
        results = await ctx.controller.resolve_conflict(record_id, req.resolutions)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ResolveConflictResponse(record_id=record_id, results=[_save_response(r) for r in results])


# Undo

@app.get("/undo", response_model=UndoStatusResponse)
def undo_status_endpoint(ctx: AppContext = Depends(get_context)):
    return UndoStatusResponse(
        can_undo=ctx.undo.can_undo,
        state=ctx.undo.state.value,
        time_remaining=ctx.undo.time_remaining,
        description=ctx.undo.undo_description
    )


@app.post("/undo", response_model=UndoExecuteResponse)
async def execute_undo_endpoint(ctx: AppContext = Depends(get_context)):
    result = await ctx.controller.undo()
    response = UndoExecuteResponse(success=result.success, error=result.error,
                                   restored_records=result.restored_records)
    if not result.success:
        return JSONResponse(status_code=409, content=response.model_dump())
    return response


@app.delete("/undo", response_model=MessageResponse)
def clear_undo_endpoint(ctx: AppContext = Depends(get_context)):
    ctx.undo.clear_undo()
    return MessageResponse(success=True)


# Drafts and local storage

@app.get("/drafts/{row_id}", response_model=DraftResponse)
def get_draft_endpoint(row_id: str, ctx: AppContext = Depends(get_context)):
    draft = ctx.controller.recover_draft(row_id)
    if draft is None:
        raise HTTPException(status_code=404, detail=f"No draft for row {row_id}")
    return DraftResponse(row_id=draft.row_id, data=draft.data, saved_at=draft.saved_at, version=draft.version)


@app.delete("/drafts/{row_id}", response_model=MessageResponse)
def delete_draft_endpoint(row_id: str, ctx: AppContext = Depends(get_context)):
    removed = ctx.drafts.remove_draft(row_id)
    return MessageResponse(success=removed)


@app.get("/storage/stats", response_model=StorageStatsResponse)
def storage_stats_endpoint(ctx: AppContext = Depends(get_context)):
    stats = ctx.drafts.get_storage_stats()
    return StorageStatsResponse(**asdict(stats))


@app.post("/storage/cleanup", response_model=CleanupResponse)
def storage_cleanup_endpoint(ctx: AppContext = Depends(get_context)):
    result = ctx.drafts.cleanup_stale_storage()
    return CleanupResponse(keys_removed=result.keys_removed, removed_keys=result.removed_keys,
                           bytes_freed=result.bytes_freed)


# Offline queue

@app.get("/pending", response_model=PendingListResponse)
def list_pending_endpoint(ctx: AppContext = Depends(get_context)):
    submissions = ctx.pending.list()
    return PendingListResponse(
        submissions=[PendingSubmissionModel.model_validate(sub) for sub in submissions],
        size=len(submissions),
        has_exhausted=any(ctx.pending.is_exhausted(sub) for sub in submissions),
        last_processed_at=ctx.pending.last_processed_at
    )


@app.post("/pending/drain", response_model=DrainResponse)
async def drain_pending_endpoint(ctx: AppContext = Depends(get_context)):
    results = await ctx.controller.retry_pending()
    return DrainResponse(
        results=[SubmissionResultModel(id=r.id, success=r.success, error=r.error,
                                       conflict=r.conflict, retryable=r.retryable) for r in results],
        remaining=ctx.pending.size
    )


@app.post("/pending/{submission_id}/retry", response_model=MessageResponse)
def retry_pending_endpoint(submission_id: str, ctx: AppContext = Depends(get_context)):
    if not ctx.pending.retry(submission_id):
        raise HTTPException(status_code=404, detail=f"Pending submission not found: {submission_id}")
    return MessageResponse(success=True)


@app.delete("/pending/{submission_id}", response_model=MessageResponse)
def remove_pending_endpoint(submission_id: str, ctx: AppContext = Depends(get_context)):
    if not ctx.pending.remove(submission_id):
        raise HTTPException(status_code=404, detail=f"Pending submission not found: {submission_id}")
    return MessageResponse(success=True)


# Error mapping

@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request, exc: ValidationFailure):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "field": exc.field, "allowed": exc.allowed},
    )


@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request, exc: RecordNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(NetworkFailure)
async def network_failure_handler(request, exc: NetworkFailure):
    logger.warning(f"Record store unreachable: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": True})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )
