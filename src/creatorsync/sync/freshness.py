"""
FreshnessTracker: per-item sync metadata driven by the provider data policy.

Items the creator has not authorized may only be kept for `retention_days`
(YouTube's 30-day rule) and must be refreshed before they are served again.
Authorized items carry no forced expiry.

Staleness is advisory for readers (stale items are returned, flagged) and
mandatory for the orchestrator, which refreshes stale items in the order
given by select_for_resync(): expired non-authorized items first.

All methods that touch the database take the caller's Session so item
metadata is committed together with the page it belongs to.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from creatorsync.models.content import ContentSyncRecord, ContentSyncStatus
from creatorsync.timeutil import utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


class FreshnessTracker:
    def __init__(
        self,
        retention_days: int = 30,
        backoff_base_seconds: float = 600.0,
        backoff_max_seconds: float = 86400.0,
        clock=utcnow,
    ):
        if retention_days <= 0:
            raise ValueError("retention_days must be positive")
        self.retention = timedelta(days=retention_days)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, clock=utcnow) -> "FreshnessTracker":
        return cls(
            retention_days=settings.retention_days,
            backoff_base_seconds=settings.item_backoff_base_seconds,
            backoff_max_seconds=settings.item_backoff_max_seconds,
            clock=clock,
        )

    # ─── Writes ──────────────────────────────────────────────────────────────

    def record_sync(
        self,
        session: Session,
        connection_id: int,
        provider_item_id: str,
        authorized: bool,
        content_id: Optional[int] = None,
    ) -> ContentSyncRecord:
        """Mark an item freshly synced; non-authorized items get an expiry."""
        now = self.clock()
        record = self._get_or_create(session, connection_id, provider_item_id)
        record.last_synced_at = now
        record.is_authorized_data = authorized
        record.expires_at = None if authorized else now + self.retention
        record.sync_status = ContentSyncStatus.COMPLETED
        record.sync_error = None
        record.sync_retry_count = 0
        record.next_sync_at = None
        if content_id is not None:
            record.content_id = content_id
        session.add(record)
        return record

    def record_failure(
        self,
        session: Session,
        connection_id: int,
        provider_item_id: str,
        error,
    ) -> ContentSyncRecord:
        """Mark an item failed and schedule its next attempt with backoff."""
        now = self.clock()
        record = self._get_or_create(session, connection_id, provider_item_id)
        record.sync_retry_count += 1
        record.sync_status = ContentSyncStatus.FAILED
        record.sync_error = str(error)[:MAX_ERROR_LENGTH]
        record.next_sync_at = now + self.backoff(record.sync_retry_count)
        session.add(record)
        logger.warning(
            "Item %s (connection %s) failed to sync, attempt %d: %s",
            provider_item_id, connection_id, record.sync_retry_count, record.sync_error,
        )
        return record

    def revoke_authorization(self, session: Session, connection_id: int) -> int:
        """Consent withdrawn: authorized records fall under the retention window from now.

        Returns the number of records downgraded.
        """
        expires_at = self.clock() + self.retention
        records = session.exec(
            select(ContentSyncRecord).where(
                ContentSyncRecord.connection_id == connection_id,
                ContentSyncRecord.is_authorized_data == True,  # noqa: E712
            )
        ).all()
        for record in records:
            record.is_authorized_data = False
            record.expires_at = expires_at
            session.add(record)
        return len(records)

    def mark_syncing(self, session: Session, records: Iterable[ContentSyncRecord]) -> None:
        for record in records:
            record.sync_status = ContentSyncStatus.SYNCING
            session.add(record)

    def backoff(self, retry_count: int) -> timedelta:
        seconds = self.backoff_base_seconds * (2 ** max(retry_count - 1, 0))
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

    # ─── Reads ───────────────────────────────────────────────────────────────

    @staticmethod
    def is_stale(record: ContentSyncRecord, now: datetime) -> bool:
        if record.expires_at is not None and now >= record.expires_at:
            return True
        return (
            record.sync_status == ContentSyncStatus.FAILED
            and record.next_sync_at is not None
            and now >= record.next_sync_at
        )

    def is_stale_item(
        self,
        session: Session,
        connection_id: int,
        provider_item_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Staleness by key; an item with no sync record has never been synced."""
        record = self.find(session, connection_id, provider_item_id)
        if record is None:
            return True
        return self.is_stale(record, now or self.clock())

    def select_for_resync(
        self,
        session: Session,
        connection_id: int,
        now: Optional[datetime] = None,
        limit: int = 50,
        include_fresh: bool = False,
    ) -> List[ContentSyncRecord]:
        """Records to refresh next, most urgent first.

        1. expired non-authorized items, oldest expiry first
        2. failed items whose retry time has come, earliest first
        3. (include_fresh only) everything else, least recently synced first
        """
        now = now or self.clock()
        base = select(ContentSyncRecord).where(ContentSyncRecord.connection_id == connection_id)

        expired = session.exec(
            base.where(
                ContentSyncRecord.is_authorized_data == False,  # noqa: E712
                ContentSyncRecord.expires_at != None,  # noqa: E711
                ContentSyncRecord.expires_at <= now,
            ).order_by(ContentSyncRecord.expires_at)
        ).all()
        failed_due = session.exec(
            base.where(
                ContentSyncRecord.sync_status == ContentSyncStatus.FAILED,
                ContentSyncRecord.next_sync_at != None,  # noqa: E711
                ContentSyncRecord.next_sync_at <= now,
            ).order_by(ContentSyncRecord.next_sync_at)
        ).all()
        groups = [expired, failed_due]
        if include_fresh:
            groups.append(
                session.exec(
                    base.order_by(
                        ContentSyncRecord.last_synced_at.is_(None).desc(),
                        ContentSyncRecord.last_synced_at,
                    )
                ).all()
            )

        selected: List[ContentSyncRecord] = []
        seen = set()
        for group in groups:
            for record in group:
                if record.id in seen:
                    continue
                seen.add(record.id)
                selected.append(record)
                if len(selected) >= limit:
                    return selected
        return selected

    def status_counts(
        self, session: Session, connection_id: Optional[int] = None
    ) -> Dict[str, int]:
        """Counts per sync status plus expired-unauthorized and authorized totals."""
        now = self.clock()
        stmt = select(ContentSyncRecord.sync_status, func.count()).group_by(
            ContentSyncRecord.sync_status
        )
        expired_stmt = select(func.count()).select_from(ContentSyncRecord).where(
            ContentSyncRecord.is_authorized_data == False,  # noqa: E712
            ContentSyncRecord.expires_at <= now,
        )
        authorized_stmt = select(func.count()).select_from(ContentSyncRecord).where(
            ContentSyncRecord.is_authorized_data == True  # noqa: E712
        )
        if connection_id is not None:
            stmt = stmt.where(ContentSyncRecord.connection_id == connection_id)
            expired_stmt = expired_stmt.where(ContentSyncRecord.connection_id == connection_id)
            authorized_stmt = authorized_stmt.where(
                ContentSyncRecord.connection_id == connection_id
            )

        counts = {status.value: 0 for status in ContentSyncStatus}
        for status, count in session.exec(stmt).all():
            counts[ContentSyncStatus(status).value] = count
        counts["expired_unauthorized"] = session.exec(expired_stmt).one()
        counts["authorized"] = session.exec(authorized_stmt).one()
        return counts

    def find(
        self, session: Session, connection_id: int, provider_item_id: str
    ) -> Optional[ContentSyncRecord]:
        return session.exec(
            select(ContentSyncRecord).where(
                ContentSyncRecord.connection_id == connection_id,
                ContentSyncRecord.provider_item_id == provider_item_id,
            )
        ).first()

    # ─── Internals ───────────────────────────────────────────────────────────

    def _get_or_create(
        self, session: Session, connection_id: int, provider_item_id: str
    ) -> ContentSyncRecord:
        record = self.find(session, connection_id, provider_item_id)
        if record is None:
            record = ContentSyncRecord(
                connection_id=connection_id, provider_item_id=provider_item_id
            )
            session.add(record)
        return record
