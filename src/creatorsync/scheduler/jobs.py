"""
APScheduler jobs for background sync.

Every `poll_interval_minutes` the poll job picks the connections that are due
(next_sync_at unset or past) and runs one pass for each, several at a time.
A second job runs every `crawl_interval_minutes` for connections that are
mid-crawl, so a backfill does not advance only one page per poll interval.
Connections awaiting re-consent or fatally failed are never picked up; they
need an external event (consent grant, operator reset).

The scheduler runs inside the same process as the orchestrator (wired in __main__.py).
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import or_
from sqlmodel import Session, select

from creatorsync.config import get_settings
from creatorsync.models.connection import PlatformConnection, SyncState
from creatorsync.sync.state_machine import CURSOR_STATES

logger = logging.getLogger(__name__)

# Backfills (including ones not yet started) and incremental crawls
CRAWL_STATES = CURSOR_STATES | {SyncState.NEVER_SYNCED}


def build_scheduler(orchestrator, engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        orchestrator: SyncOrchestrator that runs the passes.
        engine: SQLAlchemy engine used to find due connections.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _poll_due_connections,
        trigger="interval",
        minutes=settings.poll_interval_minutes,
        id="poll_connections",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"orchestrator": orchestrator, "engine": engine},
    )

    scheduler.add_job(
        _poll_due_connections,
        trigger="interval",
        minutes=settings.crawl_interval_minutes,
        id="continue_crawls",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"orchestrator": orchestrator, "engine": engine, "states": CRAWL_STATES},
    )

    return scheduler


def due_connection_ids(
    engine, now, limit: int = 100, states: Optional[Iterable[SyncState]] = None
) -> List[int]:
    """Ids of connections whose next pass is due, oldest schedule first.

    `states` narrows the pick to connections in those sync states.
    """
    stmt = select(PlatformConnection.id).where(
        PlatformConnection.sync_state != SyncState.CONSENT_CHANGED,
        or_(
            PlatformConnection.sync_state != SyncState.FAILED,
            PlatformConnection.failure_retryable == True,  # noqa: E712
        ),
        or_(
            PlatformConnection.next_sync_at == None,  # noqa: E711
            PlatformConnection.next_sync_at <= now,
        ),
        or_(
            PlatformConnection.sync_state != SyncState.FAILED,
            PlatformConnection.next_retry_at == None,  # noqa: E711
            PlatformConnection.next_retry_at <= now,
        ),
    )
    if states is not None:
        stmt = stmt.where(PlatformConnection.sync_state.in_(list(states)))
    stmt = stmt.order_by(
        PlatformConnection.next_sync_at.is_(None).desc(), PlatformConnection.next_sync_at
    ).limit(limit)
    with Session(engine) as s:
        return list(s.exec(stmt).all())


async def _poll_due_connections(orchestrator, engine, states=None) -> None:
    """
    Poll job: run one pass for every due connection.

    Failures of individual passes are logged; they never stop the others or
    the scheduler.
    """
    settings = get_settings()
    now = orchestrator.clock()
    try:
        ids = due_connection_ids(engine, now, limit=settings.due_batch_size, states=states)
    except Exception as exc:
        logger.error("Poll job could not load due connections: %s", exc)
        return

    if not ids:
        logger.debug("Poll job: nothing due")
        return
    logger.info("Poll job: %d connections due", len(ids))

    semaphore = asyncio.Semaphore(settings.max_concurrent_passes)

    async def _one(connection_id: int) -> None:
        async with semaphore:
            try:
                await orchestrator.run_pass(connection_id)
            except Exception as exc:
                logger.error("Sync pass for connection %s failed: %s", connection_id, exc)

    await asyncio.gather(*(_one(cid) for cid in ids))
