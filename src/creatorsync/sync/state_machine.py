"""
SyncStateMachine: the only component that changes a connection's sync state.

Pure: operates on an in-memory PlatformConnection and performs no I/O. Each
operation returns a Step naming the states it passed through and what should
happen to the pagination cursor; the orchestrator applies the cursor action
through PageCursorStore and then calls check().

Legal edges are enumerated in TRANSITIONS:

    NEVER_SYNCED ──► INITIAL_SYNCING ──► IN_PROGRESS ⟲ (next page)
                                            │
                      full backfill done ───┴──► COMPLETED ──► INCREMENTAL
                      incremental crawl done ──────────────► INCREMENTAL
    INCREMENTAL ──► IN_PROGRESS            (a poll found new items)
    any ──► CONSENT_CHANGED ──► INITIAL_SYNCING   (re-consent forces a backfill)
    INITIAL_SYNCING / IN_PROGRESS / INCREMENTAL ──► FAILED ──► (state it failed from)

An incremental crawl fetches at most `incremental_page_ceiling` pages per
poll. At the ceiling it stays IN_PROGRESS with its cursor and resumes on the
next scheduled poll; the watermark only advances once the provider runs out
of pages, so nothing older than the paused page is skipped.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Tuple, Union

from creatorsync.errors import InvalidTransitionError
from creatorsync.models.connection import PlatformConnection, SyncState

logger = logging.getLogger(__name__)

S = SyncState

TRANSITIONS: Dict[SyncState, FrozenSet[SyncState]] = {
    S.NEVER_SYNCED: frozenset({S.INITIAL_SYNCING, S.CONSENT_CHANGED}),
    S.INITIAL_SYNCING: frozenset({S.IN_PROGRESS, S.FAILED, S.CONSENT_CHANGED}),
    S.IN_PROGRESS: frozenset(
        {S.IN_PROGRESS, S.COMPLETED, S.INCREMENTAL, S.FAILED, S.CONSENT_CHANGED}
    ),
    S.COMPLETED: frozenset({S.INCREMENTAL, S.CONSENT_CHANGED}),
    S.INCREMENTAL: frozenset({S.IN_PROGRESS, S.FAILED, S.CONSENT_CHANGED}),
    S.CONSENT_CHANGED: frozenset({S.INITIAL_SYNCING}),
    S.FAILED: frozenset(
        {S.INITIAL_SYNCING, S.IN_PROGRESS, S.INCREMENTAL, S.CONSENT_CHANGED}
    ),
}

# States in which a live cursor is meaningful
CURSOR_STATES = frozenset({S.INITIAL_SYNCING, S.IN_PROGRESS})
# States that may hold a parked cursor for later resumption
PARKED_CURSOR_STATES = frozenset({S.FAILED, S.CONSENT_CHANGED})
# States from which a provider call is issued (and so can fail)
POLLABLE_STATES = frozenset({S.INITIAL_SYNCING, S.IN_PROGRESS, S.INCREMENTAL})


# ── Cursor actions ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KeepCursor:
    pass


@dataclass(frozen=True)
class AdvanceCursor:
    token: str


@dataclass(frozen=True)
class ClearCursor:
    pass


CursorAction = Union[KeepCursor, AdvanceCursor, ClearCursor]


@dataclass(frozen=True)
class Step:
    states: Tuple[SyncState, ...]
    cursor: CursorAction


def can_transition(source: SyncState, target: SyncState) -> bool:
    return target in TRANSITIONS[source]


class SyncStateMachine:
    """Transition rules, counters and retry backoff for one connection at a time."""

    def __init__(
        self,
        failure_ceiling: int = 3,
        incremental_page_ceiling: int = 3,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 300.0,
    ):
        if failure_ceiling < 1:
            raise ValueError("failure_ceiling must be at least 1")
        if incremental_page_ceiling < 1:
            raise ValueError("incremental_page_ceiling must be at least 1")
        self.failure_ceiling = failure_ceiling
        self.incremental_page_ceiling = incremental_page_ceiling
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    @classmethod
    def from_settings(cls, settings) -> "SyncStateMachine":
        return cls(
            failure_ceiling=settings.failure_ceiling,
            incremental_page_ceiling=settings.incremental_page_ceiling,
            backoff_base_seconds=settings.retry_backoff_base_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
        )

    # ─── Backoff ─────────────────────────────────────────────────────────────

    def backoff(self, attempt: int) -> timedelta:
        """Exponential delay for the given zero-based attempt, capped."""
        seconds = self.backoff_base_seconds * (2 ** max(attempt, 0))
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

    def crawl_paused(self, conn: PlatformConnection) -> bool:
        """True if an incremental crawl used up this poll's page allowance.

        The crawl keeps its cursor and the old watermark; the next scheduled
        poll continues from the saved page.
        """
        return (
            conn.sync_state == S.IN_PROGRESS
            and not conn.full_sync_active
            and conn.crawl_page_count >= self.incremental_page_ceiling
        )

    def retry_due(self, conn: PlatformConnection, now: datetime) -> bool:
        """True if a FAILED connection may be retried by the scheduler now."""
        if conn.sync_state != S.FAILED or not conn.failure_retryable:
            return False
        return conn.next_retry_at is None or now >= conn.next_retry_at

    # ─── Operations ──────────────────────────────────────────────────────────

    def start_full_sync(self, conn: PlatformConnection, now: datetime) -> Step:
        """NEVER_SYNCED → INITIAL_SYNCING: first sync of a newly linked account."""
        if conn.sync_state != S.NEVER_SYNCED:
            raise InvalidTransitionError(
                f"Connection {conn.id}: full sync can only start from "
                f"{S.NEVER_SYNCED.value}, not {conn.sync_state.value}"
            )
        return self._begin_full_sync(conn, now)

    def record_page(
        self,
        conn: PlatformConnection,
        next_token,
        new_items: int,
        now: datetime,
        total=None,
    ) -> Step:
        """Apply one successfully committed page.

        Args:
            next_token: Provider continuation token, or None if this was the last page.
            new_items: Items synced for the first time in this crawl.
            total: Provider-reported catalog size, if known.
        """
        if new_items < 0:
            raise ValueError("new_items must not be negative")
        if conn.sync_state not in POLLABLE_STATES:
            raise InvalidTransitionError(
                f"Connection {conn.id}: cannot record a page in {conn.sync_state.value}"
            )

        path = []
        if conn.sync_state == S.INCREMENTAL:
            self._move(conn, S.IN_PROGRESS, path)
            conn.sync_started_at = now
            conn.crawl_page_count = 0
        elif conn.sync_state == S.INITIAL_SYNCING:
            self._move(conn, S.IN_PROGRESS, path)
        elif self.crawl_paused(conn):
            # A new poll resumes the paused crawl with a fresh page allowance
            conn.crawl_page_count = 0

        conn.synced_item_count += new_items
        if total is not None:
            conn.total_item_count = total
        conn.crawl_page_count += 1
        conn.last_synced_at = now
        self._clear_failures(conn)

        if next_token:
            if not path:
                self._move(conn, S.IN_PROGRESS, path)
            return Step(tuple(path), AdvanceCursor(next_token))

        # Crawl finished: the provider has no further pages
        if conn.full_sync_active:
            self._move(conn, S.COMPLETED, path)
            conn.sync_completed_at = now
            self._freeze_full_sync(conn)
        self._move(conn, S.INCREMENTAL, path)
        conn.watermark_at = conn.sync_started_at
        conn.crawl_page_count = 0
        return Step(tuple(path), ClearCursor())

    def record_empty_poll(self, conn: PlatformConnection, now: datetime) -> Step:
        """An incremental poll found nothing new; stay INCREMENTAL."""
        if conn.sync_state != S.INCREMENTAL:
            raise InvalidTransitionError(
                f"Connection {conn.id}: empty poll outside {S.INCREMENTAL.value}"
            )
        conn.last_synced_at = now
        conn.watermark_at = now
        self._clear_failures(conn)
        return Step((), KeepCursor())

    def record_failure(
        self,
        conn: PlatformConnection,
        message: str,
        retryable: bool,
        now: datetime,
    ) -> Step:
        """Count a failed provider call; move to FAILED at the ceiling or if fatal.

        The cursor is always kept so a retry resumes rather than restarts.
        """
        source = conn.sync_state
        if source not in POLLABLE_STATES:
            raise InvalidTransitionError(
                f"Connection {conn.id}: cannot fail from {source.value}"
            )
        conn.consecutive_failure_count += 1
        conn.last_sync_error = message
        if retryable and conn.consecutive_failure_count < self.failure_ceiling:
            return Step((), KeepCursor())

        path = []
        self._move(conn, S.FAILED, path)
        conn.failed_from_state = source
        conn.failure_retryable = retryable
        if retryable:
            attempt = conn.retry_attempt_count + conn.consecutive_failure_count
            conn.next_retry_at = now + self.backoff(attempt)
        else:
            conn.next_retry_at = None
        return Step(tuple(path), KeepCursor())

    def retry(self, conn: PlatformConnection, now: datetime, force: bool = False) -> Step:
        """FAILED → the state the connection failed from, resuming its cursor.

        Without `force` only retryable failures whose backoff has elapsed qualify;
        operators pass force=True to reset fatal failures.
        """
        if conn.sync_state != S.FAILED:
            raise InvalidTransitionError(
                f"Connection {conn.id}: retry requires {S.FAILED.value}, "
                f"not {conn.sync_state.value}"
            )
        if not force and not self.retry_due(conn, now):
            raise InvalidTransitionError(
                f"Connection {conn.id}: retry not due (retryable={conn.failure_retryable}, "
                f"next_retry_at={conn.next_retry_at})"
            )
        path = []
        self._move(conn, conn.failed_from_state or S.INITIAL_SYNCING, path)
        conn.failed_from_state = None
        conn.failure_retryable = True
        conn.next_retry_at = None
        conn.consecutive_failure_count = 0
        conn.retry_attempt_count += 1
        return Step(tuple(path), KeepCursor())

    def revoke_consent(self, conn: PlatformConnection, now: datetime) -> Step:
        """any → CONSENT_CHANGED. A mid-crawl cursor is parked, not resumed."""
        conn.data_consent_granted = False
        if conn.sync_state == S.CONSENT_CHANGED:
            return Step((), KeepCursor())
        path = []
        self._move(conn, S.CONSENT_CHANGED, path)
        conn.next_retry_at = None
        conn.failed_from_state = None
        conn.last_sync_error = None
        return Step(tuple(path), KeepCursor())

    def regrant_consent(
        self, conn: PlatformConnection, authorized: bool, now: datetime
    ) -> Step:
        """CONSENT_CHANGED → INITIAL_SYNCING. Cached items are not trusted; backfill again."""
        if conn.sync_state != S.CONSENT_CHANGED:
            raise InvalidTransitionError(
                f"Connection {conn.id}: consent re-grant requires "
                f"{S.CONSENT_CHANGED.value}, not {conn.sync_state.value}"
            )
        conn.data_consent_granted = authorized
        return self._begin_full_sync(conn, now)

    def check(self, conn: PlatformConnection) -> None:
        """Validate invariants after a step has been applied."""
        state = conn.sync_state
        if conn.page_cursor is not None and state not in CURSOR_STATES | PARKED_CURSOR_STATES:
            raise InvalidTransitionError(
                f"Connection {conn.id}: cursor present in {state.value}"
            )
        if conn.full_sync_active and state in (S.NEVER_SYNCED, S.COMPLETED, S.INCREMENTAL):
            raise InvalidTransitionError(
                f"Connection {conn.id}: full-sync mode active in {state.value}"
            )
        if state == S.FAILED and conn.failed_from_state not in POLLABLE_STATES:
            raise InvalidTransitionError(
                f"Connection {conn.id}: FAILED without a resumable source state"
            )
        for field in (
            "synced_item_count",
            "failed_item_count",
            "consecutive_failure_count",
            "crawl_page_count",
        ):
            if getattr(conn, field) < 0:
                raise InvalidTransitionError(f"Connection {conn.id}: negative {field}")

    # ─── Internals ───────────────────────────────────────────────────────────

    def _move(self, conn: PlatformConnection, target: SyncState, path: list) -> None:
        source = conn.sync_state
        if not can_transition(source, target):
            raise InvalidTransitionError(
                f"Connection {conn.id}: illegal transition {source.value} → {target.value}"
            )
        conn.sync_state = target
        path.append(target)
        if source != target:
            logger.info(
                "Connection %s: %s → %s", conn.id, source.value, target.value
            )

    def _begin_full_sync(self, conn: PlatformConnection, now: datetime) -> Step:
        path = []
        self._move(conn, S.INITIAL_SYNCING, path)
        conn.full_sync_active = True
        conn.synced_item_count = 0
        conn.failed_item_count = 0
        conn.crawl_page_count = 0
        conn.sync_started_at = now
        conn.failed_from_state = None
        conn.last_sync_error = None
        self._clear_failures(conn)
        return Step(tuple(path), ClearCursor())

    def _clear_failures(self, conn: PlatformConnection) -> None:
        conn.consecutive_failure_count = 0
        conn.retry_attempt_count = 0
        conn.next_retry_at = None
        conn.last_sync_error = None

    def _freeze_full_sync(self, conn: PlatformConnection) -> None:
        snapshot = conn.current_full_sync_progress()
        conn.full_sync_synced = snapshot.synced
        conn.full_sync_remaining = snapshot.remaining
        conn.full_sync_percent = snapshot.percent
        conn.full_sync_active = False
