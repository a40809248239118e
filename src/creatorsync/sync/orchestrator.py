"""
SyncOrchestrator: drives one synchronization pass for one platform connection.

Flow for a single pass:
  1. Create SyncLog (status="running")
  2. CONSENT_CHANGED → stop, surface "needs re-consent"; FAILED → retry only if due
  3. Check the quota budget for the listing call; abort before any call if short
  4. Page loop (at most pages_per_pass pages), each page one unit of work:
       checkpoint (pending consent revocation?) → budget → load cursor →
       provider call → record usage → map + upsert items, sync records,
       counters, state transition, cursor → commit
  5. In steady state, refresh stale items (expired unauthorized first)
  6. Persist last_pass_outcome / next_sync_at and close the SyncLog

Expected failures never escape run_pass(): they end the pass with a
PassOutcome and the connection's persisted state. Unclassified exceptions
and InvalidTransitionError propagate (after the SyncLog is closed).

Concurrency: one pass per connection at a time. A second trigger while a pass
is running is coalesced (returns PassOutcome.COALESCED, nothing is queued).
Passes for different connections share only the QuotaLedger.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session, select

from creatorsync.config import Settings, get_settings
from creatorsync.errors import (
    AuthorizationRevokedError,
    InvalidTransitionError,
    MalformedItemError,
    QuotaExceededError,
    SyncError,
    classify_error,
)
from creatorsync.models.connection import (
    PassOutcome,
    PlatformConnection,
    Provider,
    SyncState,
)
from creatorsync.models.content import Content, ContentCategory, ContentSyncStatus, ContentTag
from creatorsync.models.quota import QuotaOutcome
from creatorsync.models.sync import SyncLog
from creatorsync.providers.http import ITEM_DETAIL, PAGE_LISTING, ProviderPage
from creatorsync.providers.normalizer import normalize_item, raw_item_id
from creatorsync.sync.cursor import PageCursorStore
from creatorsync.sync.freshness import FreshnessTracker
from creatorsync.sync.quota import QuotaLedger
from creatorsync.sync.state_machine import (
    CURSOR_STATES,
    AdvanceCursor,
    ClearCursor,
    Step,
    SyncStateMachine,
)
from creatorsync.timeutil import utcnow

logger = logging.getLogger(__name__)

S = SyncState

# Operational signals surfaced to dashboards and the status API
SIGNAL_OK = "ok"
SIGNAL_NEEDS_RECONSENT = "needs_reconsent"
SIGNAL_QUOTA_EXHAUSTED = "quota_exhausted"
SIGNAL_SYNC_FAILED = "sync_failed"


@dataclass
class PassResult:
    connection_id: int
    outcome: Optional[PassOutcome] = None
    provider: Optional[Provider] = None
    states: List[SyncState] = field(default_factory=list)
    pages_fetched: int = 0
    items_synced: int = 0
    items_failed: int = 0
    items_refreshed: int = 0
    error: Optional[str] = None


def connection_signal(conn: PlatformConnection) -> str:
    if conn.sync_state == S.CONSENT_CHANGED:
        return SIGNAL_NEEDS_RECONSENT
    if conn.sync_state == S.FAILED:
        return SIGNAL_SYNC_FAILED
    if conn.last_pass_outcome == PassOutcome.QUOTA_EXHAUSTED:
        return SIGNAL_QUOTA_EXHAUSTED
    return SIGNAL_OK


class SyncOrchestrator:
    """Runs sync passes for platform connections against their provider clients."""

    def __init__(
        self,
        engine,
        providers: Dict[Provider, Any],
        ledger: Optional[QuotaLedger] = None,
        tracker: Optional[FreshnessTracker] = None,
        machine: Optional[SyncStateMachine] = None,
        settings: Optional[Settings] = None,
        clock=utcnow,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            providers: Provider → client (YouTubeClient, TwitterClient, or mocks in tests).
            ledger, tracker, machine: Collaborators; built from settings when omitted.
            clock: Zero-argument callable returning naive-UTC now.
            sleep: Awaitable used between in-pass retries (tests pass an AsyncMock).
        """
        self.engine = engine
        self.providers = {Provider(k): v for k, v in providers.items()}
        self.settings = settings or get_settings()
        self.clock = clock
        self.sleep = sleep
        self.ledger = ledger or QuotaLedger(engine, self.settings, clock=clock)
        self.tracker = tracker or FreshnessTracker.from_settings(self.settings, clock=clock)
        self.machine = machine or SyncStateMachine.from_settings(self.settings)
        self._active = set()
        self._preempt = set()
        self._regrant: Dict[int, bool] = {}

    def is_running(self, connection_id: int) -> bool:
        return connection_id in self._active

    async def aclose(self) -> None:
        for client in self.providers.values():
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()

    # ─── Pass ────────────────────────────────────────────────────────────────

    async def run_pass(self, connection_id: int) -> PassResult:
        """
        Run one sync pass for a connection.

        Returns:
            PassResult with the outcome, states traversed and item counts.

        Raises:
            LookupError: unknown connection.
            InvalidTransitionError / unclassified exceptions: programming errors.
        """
        if connection_id in self._active:
            logger.info("Connection %s: pass already running, trigger coalesced", connection_id)
            return PassResult(connection_id, PassOutcome.COALESCED)

        self._active.add(connection_id)
        try:
            return await self._run_pass(connection_id)
        finally:
            self._active.discard(connection_id)
            # Consent events that arrived after the pass's last checkpoint
            if connection_id in self._preempt:
                self._preempt.discard(connection_id)
                self._revoke_now(connection_id)
            if connection_id in self._regrant:
                try:
                    self._regrant_now(connection_id, self._regrant.pop(connection_id))
                except InvalidTransitionError as exc:
                    logger.warning("Connection %s: deferred consent grant dropped: %s", connection_id, exc)

    async def _run_pass(self, connection_id: int) -> PassResult:
        result = PassResult(connection_id)
        log_id = self._create_sync_log(connection_id)
        try:
            result.outcome = await self._drive(connection_id, result)
        except Exception as exc:
            result.error = str(exc)
            self._finish_sync_log(log_id, result, status="error")
            logger.exception("Connection %s: sync pass crashed", connection_id)
            raise

        self._finish_pass(connection_id, log_id, result)
        logger.info(
            "Connection %s: pass %s (pages=%d synced=%d failed=%d refreshed=%d)",
            connection_id, result.outcome.value, result.pages_fetched,
            result.items_synced, result.items_failed, result.items_refreshed,
        )
        return result

    async def _drive(self, connection_id: int, result: PassResult) -> PassOutcome:
        now = self.clock()
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            result.provider = conn.provider
            account_id = conn.account_id
            state = conn.sync_state
            if state == S.CONSENT_CHANGED:
                logger.info("Connection %s awaits re-consent; no provider call", connection_id)
                return PassOutcome.NEEDS_RECONSENT
            if state == S.FAILED and not conn.failure_retryable:
                return PassOutcome.SYNC_FAILED
            if state == S.FAILED and not self.machine.retry_due(conn, now):
                return PassOutcome.RETRY_PENDING

        client = self._client(result.provider)
        if not self._has_budget(result.provider, client.operations_for_listing(account_id)):
            return PassOutcome.QUOTA_EXHAUSTED

        if state in (S.NEVER_SYNCED, S.FAILED):
            with Session(self.engine) as s:
                conn = self._get(s, connection_id)
                if state == S.FAILED:
                    step = self.machine.retry(conn, now)
                else:
                    step = self.machine.start_full_sync(conn, now)
                self._apply(s, conn, step, result)
                s.commit()

        for _ in range(max(self.settings.pages_per_pass, 1)):
            if self._checkpoint(connection_id, result):
                return PassOutcome.NEEDS_RECONSENT
            outcome = await self._sync_page(connection_id, client, result)
            if outcome is not None:
                return outcome
            if not self._crawling(connection_id):
                break

        if self._checkpoint(connection_id, result):
            return PassOutcome.NEEDS_RECONSENT
        if self._state(connection_id) != S.INCREMENTAL:
            return PassOutcome.PROGRESSED

        outcome = await self._refresh_stale(connection_id, client, result)
        if outcome is not None:
            return outcome
        if S.COMPLETED in result.states:
            return PassOutcome.COMPLETED
        return PassOutcome.PROGRESSED if result.items_synced else PassOutcome.UP_TO_DATE

    # ─── Pages ───────────────────────────────────────────────────────────────

    async def _sync_page(
        self, connection_id: int, client, result: PassResult
    ) -> Optional[PassOutcome]:
        """Fetch and commit one page, retrying transient errors in place.

        Returns None when the page was committed, otherwise the outcome that
        ends the pass.
        """
        while True:
            with Session(self.engine) as s:
                conn = self._get(s, connection_id)
                provider, account_id = conn.provider, conn.account_id
                token = PageCursorStore(s).load(connection_id)
                published_after = None if conn.full_sync_active else conn.watermark_at

            if not self._has_budget(provider, client.operations_for_listing(account_id)):
                return PassOutcome.QUOTA_EXHAUSTED

            try:
                page = await asyncio.wait_for(
                    client.list_page(
                        account_id,
                        page_token=token,
                        published_after=published_after,
                        page_size=self.settings.page_size,
                    ),
                    timeout=self.settings.provider_timeout_seconds,
                )
            except Exception as exc:
                error = classify_error(exc)
                if error is None:
                    raise
                self.ledger.record_usage(
                    provider, PAGE_LISTING, outcome=QuotaOutcome.ERROR, error_message=str(error)
                )
                outcome, delay = self._handle_call_error(connection_id, error, result)
                if outcome is not None:
                    return outcome
                logger.warning(
                    "Connection %s: transient provider error, retrying in %.1fs: %s",
                    connection_id, delay.total_seconds(), error,
                )
                await self.sleep(delay.total_seconds())
                continue

            for operation in page.operations or [PAGE_LISTING]:
                self.ledger.record_usage(provider, operation)
            self._commit_page(connection_id, page, result)
            return None

    def _commit_page(self, connection_id: int, page: ProviderPage, result: PassResult) -> None:
        now = self.clock()
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            new_items, stored, failed = self._store_items(s, conn, page.items, now)
            if conn.sync_state == S.INCREMENTAL and not page.items and not page.next_page_token:
                step = self.machine.record_empty_poll(conn, now)
            else:
                step = self.machine.record_page(
                    conn, page.next_page_token, new_items, now, total=page.total_results
                )
            self._apply(s, conn, step, result)
            state = conn.sync_state
            s.commit()

        result.pages_fetched += 1
        result.items_synced += stored
        result.items_failed += failed
        logger.info(
            "Connection %s: page committed (%d items, %d new, %d malformed), state=%s",
            connection_id, stored, new_items, failed, state.value,
        )

    def _handle_call_error(
        self, connection_id: int, error: SyncError, result: PassResult
    ) -> Tuple[Optional[PassOutcome], Optional[timedelta]]:
        """Drive the state machine for a failed listing call.

        Returns (outcome, None) when the pass should stop, or (None, delay)
        when the call should be retried after `delay`.
        """
        result.error = str(error)
        if isinstance(error, QuotaExceededError):
            logger.warning("Connection %s: provider reports quota exhausted: %s", connection_id, error)
            return PassOutcome.QUOTA_EXHAUSTED, None

        now = self.clock()
        outcome, delay = None, None
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            if isinstance(error, AuthorizationRevokedError):
                logger.warning("Connection %s: provider revoked access: %s", connection_id, error)
                self._revoke(s, conn, now, result)
                outcome = PassOutcome.NEEDS_RECONSENT
            else:
                step = self.machine.record_failure(conn, str(error), error.retryable, now)
                self._apply(s, conn, step, result)
                if conn.sync_state == S.FAILED:
                    logger.error(
                        "Connection %s: sync failed after %d attempts (retryable=%s): %s",
                        connection_id, conn.consecutive_failure_count, error.retryable, error,
                    )
                    outcome = PassOutcome.SYNC_FAILED
                else:
                    delay = self.machine.backoff(conn.consecutive_failure_count - 1)
            s.commit()
        return outcome, delay

    # ─── Items ───────────────────────────────────────────────────────────────

    def _store_items(
        self,
        s: Session,
        conn: PlatformConnection,
        items: List[Dict[str, Any]],
        now: datetime,
    ) -> Tuple[int, int, int]:
        """Map and upsert a batch of raw items in the caller's session.

        Returns:
            (new_in_this_crawl, stored, malformed)
        """
        new_items = stored = failed = 0
        for raw in items:
            try:
                mapped = normalize_item(conn.provider, raw)
            except MalformedItemError as exc:
                item_id = exc.provider_item_id or raw_item_id(raw)
                if item_id:
                    self.tracker.record_failure(s, conn.id, item_id, exc)
                else:
                    logger.warning(
                        "Connection %s: dropping %s item without an id: %s",
                        conn.id, conn.provider.value, exc,
                    )
                conn.failed_item_count += 1
                failed += 1
                continue

            item_id = mapped["content"]["provider_item_id"]
            record = self.tracker.find(s, conn.id, item_id)
            if (
                record is None
                or record.last_synced_at is None
                or (conn.sync_started_at is not None and record.last_synced_at < conn.sync_started_at)
            ):
                new_items += 1

            content = self._upsert_content(s, conn, mapped, now)
            self.tracker.record_sync(
                s, conn.id, item_id, authorized=conn.data_consent_granted, content_id=content.id
            )
            stored += 1
        return new_items, stored, failed

    def _upsert_content(
        self, s: Session, conn: PlatformConnection, mapped: Dict[str, Any], now: datetime
    ) -> Content:
        fields = mapped["content"]
        content = s.exec(
            select(Content).where(
                Content.provider == fields["provider"],
                Content.provider_item_id == fields["provider_item_id"],
            )
        ).first()
        if content:
            # Update in place (keeps same id)
            for k, v in fields.items():
                setattr(content, k, v)
        else:
            content = Content(**fields)
        content.connection_id = conn.id
        content.creator_id = conn.creator_id
        content.synced_at = now
        s.add(content)
        s.flush()

        # Child rows are replaced wholesale so stale categories/tags never linger
        for model in (ContentCategory, ContentTag):
            for row in s.exec(select(model).where(model.content_id == content.id)).all():
                s.delete(row)
        s.flush()
        for cat in mapped["categories"]:
            s.add(ContentCategory(content_id=content.id, **cat))
        for tag in mapped["tags"]:
            s.add(ContentTag(content_id=content.id, tag=tag))
        return content

    async def _refresh_stale(
        self, connection_id: int, client, result: PassResult
    ) -> Optional[PassOutcome]:
        """Re-fetch stale items, most urgent first. Errors here stay item-level."""
        now = self.clock()
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            provider = conn.provider
            records = self.tracker.select_for_resync(
                s, connection_id, now=now, limit=self.settings.refresh_batch_size
            )
            previous = {r.provider_item_id: r.sync_status for r in records}
            ids = list(previous)
        if not ids:
            return None
        if not self._has_budget(provider, client.operations_for_details(ids)):
            logger.info("Connection %s: no budget to refresh %d stale items", connection_id, len(ids))
            return None

        with Session(self.engine) as s:
            self.tracker.mark_syncing(
                s, [self.tracker.find(s, connection_id, item_id) for item_id in ids]
            )
            s.commit()

        try:
            return await self._refresh_items(connection_id, client, provider, ids, result)
        finally:
            self._release_syncing(connection_id, previous)

    async def _refresh_items(
        self, connection_id: int, client, provider: Provider, ids: List[str], result: PassResult
    ) -> Optional[PassOutcome]:
        try:
            page = await asyncio.wait_for(
                client.get_item_details(ids), timeout=self.settings.provider_timeout_seconds
            )
        except Exception as exc:
            error = classify_error(exc)
            if error is None:
                raise
            self.ledger.record_usage(
                provider, ITEM_DETAIL, outcome=QuotaOutcome.ERROR, error_message=str(error)
            )
            outcome = None
            with Session(self.engine) as s:
                for item_id in ids:
                    self.tracker.record_failure(s, connection_id, item_id, error)
                if isinstance(error, AuthorizationRevokedError):
                    self._revoke(s, self._get(s, connection_id), self.clock(), result)
                    outcome = PassOutcome.NEEDS_RECONSENT
                s.commit()
            result.items_failed += len(ids)
            return outcome

        for operation in page.operations or [ITEM_DETAIL]:
            self.ledger.record_usage(provider, operation)

        now = self.clock()
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            _, stored, failed = self._store_items(s, conn, page.items, now)
            returned = {raw_item_id(raw) for raw in page.items}
            missing = [item_id for item_id in ids if item_id not in returned]
            for item_id in missing:
                self.tracker.record_failure(
                    s, connection_id, item_id, "item no longer available from provider"
                )
            s.commit()
        result.items_refreshed += stored
        result.items_failed += failed + len(missing)
        return None

    def _release_syncing(self, connection_id: int, previous: Dict[str, ContentSyncStatus]) -> None:
        """Give records an aborted refresh left SYNCING their prior status back."""
        with Session(self.engine) as s:
            for item_id, status in previous.items():
                record = self.tracker.find(s, connection_id, item_id)
                if record is not None and record.sync_status == ContentSyncStatus.SYNCING:
                    record.sync_status = status
                    s.add(record)
            s.commit()

    # ─── Consent & operator actions ──────────────────────────────────────────

    def handle_consent_revoked(self, connection_id: int) -> bool:
        """
        Apply a consent revocation.

        If a pass is running, the revocation takes effect at its next
        checkpoint (after the current page commits, before the next request).

        Returns:
            True if applied immediately, False if deferred to the running pass.
        """
        if connection_id in self._active:
            self._preempt.add(connection_id)
            self._regrant.pop(connection_id, None)
            logger.info("Connection %s: consent revoked mid-pass, stopping at next checkpoint", connection_id)
            return False
        self._revoke_now(connection_id)
        return True

    def handle_consent_granted(self, connection_id: int, authorized: bool = True) -> bool:
        """Re-consent: CONSENT_CHANGED → INITIAL_SYNCING, forcing a fresh backfill.

        If a pass is running, the grant is applied once it ends. It is only
        accepted while a revocation is pending or the connection already
        awaits re-consent.

        Raises:
            InvalidTransitionError: the connection is not awaiting re-consent.
        """
        if connection_id in self._active:
            if connection_id not in self._preempt and self._state(connection_id) != S.CONSENT_CHANGED:
                raise InvalidTransitionError(
                    f"Connection {connection_id}: consent re-grant requires "
                    f"{S.CONSENT_CHANGED.value} or a pending revocation"
                )
            self._regrant[connection_id] = authorized
            return False
        self._regrant_now(connection_id, authorized)
        return True

    def reset_connection(self, connection_id: int) -> PlatformConnection:
        """Operator retry of a FAILED connection, bypassing backoff and fatal errors."""
        now = self.clock()
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            step = self.machine.retry(conn, now, force=True)
            self._apply(s, conn, step, None)
            conn.next_sync_at = None
            s.commit()
            s.refresh(conn)
            logger.info("Connection %s: reset by operator to %s", connection_id, conn.sync_state.value)
            return conn

    # ─── Internal helpers ────────────────────────────────────────────────────

    def _checkpoint(self, connection_id: int, result: PassResult) -> bool:
        """Honour a revocation that arrived while this pass was running."""
        if connection_id not in self._preempt:
            return False
        self._preempt.discard(connection_id)
        now = self.clock()
        with Session(self.engine) as s:
            self._revoke(s, self._get(s, connection_id), now, result)
            s.commit()
        return True

    def _revoke_now(self, connection_id: int) -> None:
        now = self.clock()
        with Session(self.engine) as s:
            self._revoke(s, self._get(s, connection_id), now, None)
            s.commit()

    def _revoke(
        self, s: Session, conn: PlatformConnection, now: datetime, result: Optional[PassResult]
    ) -> None:
        step = self.machine.revoke_consent(conn, now)
        downgraded = self.tracker.revoke_authorization(s, conn.id)
        self._apply(s, conn, step, result)
        logger.info(
            "Connection %s: consent revoked, %d authorized items now expire", conn.id, downgraded
        )

    def _regrant_now(self, connection_id: int, authorized: bool) -> None:
        now = self.clock()
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            step = self.machine.regrant_consent(conn, authorized, now)
            self._apply(s, conn, step, None)
            conn.next_sync_at = None
            s.commit()

    def _apply(
        self, s: Session, conn: PlatformConnection, step: Step, result: Optional[PassResult]
    ) -> None:
        """Apply a step's cursor action, then validate the connection's invariants."""
        store = PageCursorStore(s)
        if isinstance(step.cursor, AdvanceCursor):
            store.save(conn.id, step.cursor.token)
        elif isinstance(step.cursor, ClearCursor):
            store.clear(conn.id)
        conn.updated_at = self.clock()
        self.machine.check(conn)
        s.add(conn)
        if result is not None:
            result.states.extend(step.states)

    def _has_budget(self, provider: Provider, operations: List[str]) -> bool:
        required = sum(self.ledger.cost_for(provider, op) for op in operations)
        if self.ledger.has_budget(provider, required):
            return True
        logger.info("Quota budget for %s exhausted (needs %d units)", provider.value, required)
        return False

    def _client(self, provider: Provider):
        try:
            return self.providers[provider]
        except KeyError:
            raise LookupError(f"No client configured for provider {provider.value}") from None

    def _get(self, s: Session, connection_id: int) -> PlatformConnection:
        conn = s.get(PlatformConnection, connection_id)
        if conn is None:
            raise LookupError(f"Platform connection {connection_id} not found")
        return conn

    def _state(self, connection_id: int) -> SyncState:
        with Session(self.engine) as s:
            return self._get(s, connection_id).sync_state

    def _crawling(self, connection_id: int) -> bool:
        """True if the crawl should fetch another page within this pass."""
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            return conn.sync_state in CURSOR_STATES and not self.machine.crawl_paused(conn)

    def _next_sync_at(
        self,
        conn: PlatformConnection,
        outcome: PassOutcome,
        now: datetime,
        resume_at: Optional[datetime],
    ) -> Optional[datetime]:
        if outcome == PassOutcome.QUOTA_EXHAUSTED:
            return resume_at
        if conn.sync_state == S.FAILED:
            return conn.next_retry_at  # None for fatal failures
        if conn.sync_state == S.CONSENT_CHANGED:
            return None
        if conn.sync_state in CURSOR_STATES and not self.machine.crawl_paused(conn):
            return now  # crawl continues on the next poll
        return now + timedelta(minutes=self.settings.poll_interval_minutes)

    def _create_sync_log(self, connection_id: int) -> int:
        log = SyncLog(connection_id=connection_id, started_at=self.clock(), status="running")
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
            return log.id

    def _finish_sync_log(self, log_id: int, result: PassResult, *, status: str) -> None:
        with Session(self.engine) as s:
            log = s.get(SyncLog, log_id)
            log.status = status
            log.finished_at = self.clock()
            log.pages_fetched = result.pages_fetched
            log.items_synced = result.items_synced
            log.items_failed = result.items_failed
            log.error_message = result.error
            conn = s.get(PlatformConnection, result.connection_id)
            log.final_state = conn.sync_state.value if conn else None
            s.add(log)
            s.commit()

    def _finish_pass(self, connection_id: int, log_id: int, result: PassResult) -> None:
        now = self.clock()
        resume_at = None
        if result.outcome == PassOutcome.QUOTA_EXHAUSTED:
            resume_at = self.ledger.next_period_start(result.provider, now)
        with Session(self.engine) as s:
            conn = self._get(s, connection_id)
            conn.last_pass_outcome = result.outcome
            conn.next_sync_at = self._next_sync_at(conn, result.outcome, now, resume_at)
            conn.updated_at = now
            s.add(conn)
            s.commit()
        self._finish_sync_log(log_id, result, status=result.outcome.value)


def build_orchestrator(engine=None, settings: Optional[Settings] = None) -> SyncOrchestrator:
    """Wire the production orchestrator: real provider clients and settings-driven collaborators."""
    from creatorsync.db.engine import get_engine
    from creatorsync.providers.twitter import TwitterClient
    from creatorsync.providers.youtube import YouTubeClient

    settings = settings or get_settings()
    timeout = settings.provider_timeout_seconds
    providers = {
        Provider.YOUTUBE: YouTubeClient(settings.youtube_api_key, timeout=timeout),
        Provider.TWITTER: TwitterClient(settings.twitter_bearer_token, timeout=timeout),
    }
    return SyncOrchestrator(engine or get_engine(), providers, settings=settings)
