"""Sync trigger, status, consent and quota routes."""
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from creatorsync.db.engine import get_session
from creatorsync.errors import InvalidTransitionError
from creatorsync.models.connection import (
    FullSyncActive,
    PlatformConnection,
    Provider,
)
from creatorsync.models.sync import SyncLog
from creatorsync.sync.orchestrator import SyncOrchestrator, build_orchestrator, connection_signal

router = APIRouter()

_orchestrator: Optional[SyncOrchestrator] = None


def get_orchestrator() -> SyncOrchestrator:
    """FastAPI dependency: the process-wide orchestrator (overridden in tests)."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


class FullSyncView(BaseModel):
    active: bool
    synced: int
    remaining: Optional[int]
    percent: int


class ConnectionStatusResponse(BaseModel):
    id: int
    creator_id: int
    provider: str
    account_id: str
    sync_state: str
    signal: str
    running: bool
    progress_percent: int
    total_item_count: Optional[int]
    synced_item_count: int
    failed_item_count: int
    consecutive_failure_count: int
    has_cursor: bool
    full_sync: Optional[FullSyncView]
    data_consent_granted: bool
    last_synced_at: Optional[datetime]
    next_sync_at: Optional[datetime]
    next_retry_at: Optional[datetime]
    last_sync_error: Optional[str]
    last_pass_outcome: Optional[str]


class ConsentGrantRequest(BaseModel):
    authorized: bool = True


def _get_connection(session: Session, connection_id: int) -> PlatformConnection:
    conn = session.get(PlatformConnection, connection_id)
    if conn is None:
        raise HTTPException(status_code=404, detail=f"Connection {connection_id} not found")
    return conn


def _status(conn: PlatformConnection, orchestrator: SyncOrchestrator) -> ConnectionStatusResponse:
    mode = conn.full_sync_mode
    if isinstance(mode, FullSyncActive):
        full_sync = FullSyncView(active=True, **asdict(mode.progress))
    elif mode.last_snapshot is not None:
        full_sync = FullSyncView(active=False, **asdict(mode.last_snapshot))
    else:
        full_sync = None
    return ConnectionStatusResponse(
        id=conn.id,
        creator_id=conn.creator_id,
        provider=conn.provider.value,
        account_id=conn.account_id,
        sync_state=conn.sync_state.value,
        signal=connection_signal(conn),
        running=orchestrator.is_running(conn.id),
        progress_percent=conn.progress_percent,
        total_item_count=conn.total_item_count,
        synced_item_count=conn.synced_item_count,
        failed_item_count=conn.failed_item_count,
        consecutive_failure_count=conn.consecutive_failure_count,
        has_cursor=conn.page_cursor is not None,
        full_sync=full_sync,
        data_consent_granted=conn.data_consent_granted,
        last_synced_at=conn.last_synced_at,
        next_sync_at=conn.next_sync_at,
        next_retry_at=conn.next_retry_at,
        last_sync_error=conn.last_sync_error,
        last_pass_outcome=conn.last_pass_outcome.value if conn.last_pass_outcome else None,
    )


@router.post("/connections/{connection_id}/trigger")
async def trigger_sync(
    connection_id: int,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Trigger an on-demand pass for one connection.
    Returns immediately; the pass runs in background and is coalesced if one is running.
    """
    _get_connection(session, connection_id)
    if orchestrator.is_running(connection_id):
        return {"message": "Sync already running", "connection_id": connection_id}
    background_tasks.add_task(orchestrator.run_pass, connection_id)
    return {"message": "Sync started", "connection_id": connection_id}


@router.get("/connections/{connection_id}", response_model=ConnectionStatusResponse)
def connection_status(
    connection_id: int,
    session: Session = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Return the persisted sync state of one connection."""
    return _status(_get_connection(session, connection_id), orchestrator)


@router.get("/connections/{connection_id}/logs", response_model=List[SyncLog])
def connection_logs(
    connection_id: int,
    limit: int = 20,
    session: Session = Depends(get_session),
):
    """Most recent passes first."""
    _get_connection(session, connection_id)
    return session.exec(
        select(SyncLog)
        .where(SyncLog.connection_id == connection_id)
        .order_by(SyncLog.started_at.desc(), SyncLog.id.desc())
        .limit(limit)
    ).all()


@router.get("/connections/{connection_id}/items")
def item_freshness(
    connection_id: int,
    session: Session = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, int]:
    """Per-status counts of the connection's content sync records."""
    _get_connection(session, connection_id)
    return orchestrator.tracker.status_counts(session, connection_id)


@router.post("/connections/{connection_id}/consent/revoke")
def revoke_consent(
    connection_id: int,
    session: Session = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    _get_connection(session, connection_id)
    applied = orchestrator.handle_consent_revoked(connection_id)
    return {"connection_id": connection_id, "applied": applied}


@router.post("/connections/{connection_id}/consent/grant")
def grant_consent(
    connection_id: int,
    request: ConsentGrantRequest,
    session: Session = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    _get_connection(session, connection_id)
    try:
        applied = orchestrator.handle_consent_granted(connection_id, request.authorized)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"connection_id": connection_id, "applied": applied}


@router.post("/connections/{connection_id}/reset")
def reset_connection(
    connection_id: int,
    session: Session = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Operator reset of a FAILED connection."""
    _get_connection(session, connection_id)
    try:
        conn = orchestrator.reset_connection(connection_id)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"connection_id": connection_id, "sync_state": conn.sync_state.value}


@router.get("/quota/{provider}")
def quota_usage(
    provider: Provider,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Current-period quota usage for a provider."""
    return orchestrator.ledger.usage_summary(provider)
