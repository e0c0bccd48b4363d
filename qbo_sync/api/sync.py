"""Sync control and status API endpoints."""

import asyncio
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from qbo_sync.models.enums import ObjectType
from qbo_sync.repositories.sync_history import SyncHistoryLog
from qbo_sync.repositories.sync_state import SyncStateStore
from qbo_sync.repositories.token_store import TokenStore
from qbo_sync.services.scheduler import SyncScheduler

router = APIRouter(prefix="/api/sync", tags=["sync"])


class ObjectSyncStatus(BaseModel):
    object_type: str
    status: str
    cursor: Optional[str] = None
    last_sync_attempt: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    error_message: Optional[str] = None
    total_records: int = 0
    syncing: bool = False


class SyncStatusResponse(BaseModel):
    realm_id: Optional[str]
    scheduler_running: bool
    cycle_running: bool
    objects: list[ObjectSyncStatus] = []


class ObjectSyncResult(BaseModel):
    object_type: str
    synced: int
    errors: int
    skipped: bool = False


class SyncRunResponse(BaseModel):
    realm_id: str
    results: list[ObjectSyncResult]


class HistoryRecord(BaseModel):
    id: int
    object_type: str
    status: str
    records_synced: int
    records_failed: int
    duration_ms: Optional[int]
    cursor_before: Optional[str]
    cursor_after: Optional[str]
    error_message: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class HistorySummary(BaseModel):
    object_type: str
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    total_records_synced: int
    last_sync_time: Optional[datetime]
    last_sync_status: Optional[str]

    class Config:
        from_attributes = True


def _scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def _parse_object_type(value: str) -> ObjectType:
    try:
        return ObjectType(value.lower())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown object type: {value}")


async def _require_realm(request: Request) -> str:
    realm_id = await TokenStore(request.app.state.session_factory).get_active_realm_id()
    if not realm_id:
        raise HTTPException(status_code=409, detail="No authorized realm. Run bootstrap first.")
    return realm_id


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(request: Request):
    """Current sync state for every object type of the active realm."""
    scheduler = _scheduler(request)
    session_factory = request.app.state.session_factory

    realm_id = await TokenStore(session_factory).get_active_realm_id()
    response = SyncStatusResponse(
        realm_id=realm_id,
        scheduler_running=scheduler.is_running,
        cycle_running=scheduler.cycle_running,
    )
    if not realm_id:
        return response

    states = SyncStateStore(session_factory)
    for object_type in ObjectType:
        engine = scheduler.engine_for(realm_id, object_type)
        state = await states.get(realm_id, object_type)
        response.objects.append(
            ObjectSyncStatus(
                object_type=object_type.value,
                status=state.status,
                cursor=state.cursor,
                last_sync_attempt=state.last_sync_attempt,
                last_sync_success=state.last_sync_success,
                error_message=state.error_message,
                total_records=await engine.repository.count_by_realm_id(realm_id),
                syncing=engine.is_syncing,
            )
        )
    return response


@router.post("/run", response_model=SyncRunResponse)
async def run_sync(request: Request, object_type: Optional[str] = None):
    """Run a cycle now for one object type, or all of them concurrently."""
    scheduler = _scheduler(request)
    realm_id = await _require_realm(request)

    types = [_parse_object_type(object_type)] if object_type else list(ObjectType)
    engines = [scheduler.engine_for(realm_id, t) for t in types]
    results = await asyncio.gather(*(e.sync() for e in engines))

    return SyncRunResponse(
        realm_id=realm_id,
        results=[
            ObjectSyncResult(
                object_type=engine.object_type.value,
                synced=result.synced,
                errors=result.errors,
                skipped=result.skipped,
            )
            for engine, result in zip(engines, results)
        ],
    )


@router.post("/reset/{object_type}")
async def reset_sync(object_type: str, request: Request):
    """Clear the cursor so the next cycle does a full resync."""
    parsed = _parse_object_type(object_type)
    realm_id = await _require_realm(request)
    await _scheduler(request).engine_for(realm_id, parsed).reset()
    return {"status": "reset", "realm_id": realm_id, "object_type": parsed.value}


@router.get("/history", response_model=list[HistoryRecord])
async def get_history(
    request: Request,
    object_type: Optional[str] = None,
    limit: int = Query(10, ge=1, le=500),
):
    """Most recent sync cycles, newest first."""
    realm_id = await _require_realm(request)
    history = SyncHistoryLog(request.app.state.session_factory)

    if object_type:
        records = await history.find_by_realm_and_type(realm_id, _parse_object_type(object_type), limit)
    else:
        records = await history.find_by_realm_id(realm_id, limit)
    return [HistoryRecord.model_validate(r) for r in records]


@router.get("/history/summary", response_model=list[HistorySummary])
async def get_history_summary(request: Request):
    """Per-object-type totals across the whole history."""
    realm_id = await _require_realm(request)
    summary = await SyncHistoryLog(request.app.state.session_factory).get_summary(realm_id)
    return [HistorySummary.model_validate(s) for s in summary]
