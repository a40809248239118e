"""Platform connection model: one row per (creator, provider) link."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from creatorsync.timeutil import utcnow


class Provider(str, Enum):
    YOUTUBE = "youtube"
    TWITTER = "twitter"


class SyncState(str, Enum):
    NEVER_SYNCED = "never_synced"
    INITIAL_SYNCING = "initial_syncing"
    IN_PROGRESS = "in_progress"
    INCREMENTAL = "incremental"
    CONSENT_CHANGED = "consent_changed"
    COMPLETED = "completed"
    FAILED = "failed"


class PassOutcome(str, Enum):
    """Result of one orchestrator pass, surfaced to operational tooling."""

    PROGRESSED = "progressed"
    COMPLETED = "completed"
    UP_TO_DATE = "up_to_date"
    QUOTA_EXHAUSTED = "quota_exhausted"
    NEEDS_RECONSENT = "needs_reconsent"
    RETRY_PENDING = "retry_pending"
    SYNC_FAILED = "sync_failed"
    COALESCED = "coalesced"


# ── Full-sync progress ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FullSyncProgress:
    synced: int
    remaining: Optional[int]
    percent: int


@dataclass(frozen=True)
class FullSyncActive:
    """A full backfill is running."""

    progress: FullSyncProgress


@dataclass(frozen=True)
class FullSyncInactive:
    """No full backfill running; carries the snapshot frozen when the last one ended."""

    last_snapshot: Optional[FullSyncProgress] = None


FullSyncMode = Union[FullSyncActive, FullSyncInactive]


def progress_percent(synced: int, total: Optional[int]) -> int:
    """synced/total as a whole percentage clamped to [0, 100]; 0 if total unknown."""
    if not total or total <= 0:
        return 0
    return max(0, min(100, round(synced * 100 / total)))


# ── Table ─────────────────────────────────────────────────────────────────────

class PlatformConnection(SQLModel, table=True):
    """
    A creator's linked account on one provider, plus its sync lifecycle.

    Mutated only through SyncStateMachine (state, counters) and
    PageCursorStore (page_cursor), both driven by SyncOrchestrator.
    """

    __table_args__ = (UniqueConstraint("creator_id", "provider"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    creator_id: int = Field(index=True)
    provider: Provider
    account_id: str  # YouTube channel id / Twitter user id

    sync_state: SyncState = Field(default=SyncState.NEVER_SYNCED, index=True)
    page_cursor: Optional[str] = None

    # Progress counters
    total_item_count: Optional[int] = None  # provider-reported, approximate
    synced_item_count: int = 0
    failed_item_count: int = 0
    consecutive_failure_count: int = 0
    retry_attempt_count: int = 0
    crawl_page_count: int = 0

    sync_started_at: Optional[datetime] = None  # start of the current crawl
    sync_completed_at: Optional[datetime] = None  # end of the last full backfill
    last_synced_at: Optional[datetime] = None
    watermark_at: Optional[datetime] = None  # incremental polls fetch items newer than this
    next_sync_at: Optional[datetime] = Field(default=None, index=True)
    next_retry_at: Optional[datetime] = None

    failed_from_state: Optional[SyncState] = None
    failure_retryable: bool = True

    # Full-sync sub-record storage; read through full_sync_mode
    full_sync_active: bool = False
    full_sync_synced: Optional[int] = None
    full_sync_remaining: Optional[int] = None
    full_sync_percent: Optional[int] = None

    data_consent_granted: bool = False
    last_sync_error: Optional[str] = None
    last_pass_outcome: Optional[PassOutcome] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def progress_percent(self) -> int:
        return progress_percent(self.synced_item_count, self.total_item_count)

    @property
    def full_sync_mode(self) -> FullSyncMode:
        if self.full_sync_active:
            return FullSyncActive(progress=self.current_full_sync_progress())
        if self.full_sync_synced is None:
            return FullSyncInactive()
        return FullSyncInactive(
            last_snapshot=FullSyncProgress(
                synced=self.full_sync_synced,
                remaining=self.full_sync_remaining,
                percent=self.full_sync_percent or 0,
            )
        )

    def current_full_sync_progress(self) -> FullSyncProgress:
        remaining = None
        if self.total_item_count is not None:
            remaining = max(self.total_item_count - self.synced_item_count, 0)
        return FullSyncProgress(
            synced=self.synced_item_count,
            remaining=remaining,
            percent=self.progress_percent,
        )
