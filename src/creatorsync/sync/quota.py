"""
QuotaLedger: records the cost of every outbound provider call and answers
"is there budget left" before a call is made.

The ledger is the only state shared between connections. Each call appends
an independent QuotaUsageEvent row and totals are computed with SUM, so
concurrent workers never read-modify-write a shared counter. The
check-then-call-then-record sequence is deliberately not serialized across
workers: overshoot is bounded by the calls in flight at the moment the
budget runs out, and `quota_safety_margin` keeps that inside the provider's
hard limit. Provider-side rate limiting remains the real backstop.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from creatorsync.config import Settings, get_settings
from creatorsync.models.connection import Provider
from creatorsync.models.quota import QuotaOutcome, QuotaUsageEvent
from creatorsync.timeutil import utcnow

logger = logging.getLogger(__name__)

PERIOD = timedelta(days=1)
WARNING_THRESHOLD = 0.80
CRITICAL_THRESHOLD = 0.95

ProviderLike = Union[Provider, str]


class QuotaLedger:
    """Per-provider quota accounting backed by the quota usage event table."""

    def __init__(self, engine, settings: Optional[Settings] = None, clock=utcnow):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            settings: Budgets and cost tables. Defaults to get_settings().
            clock: Zero-argument callable returning naive-UTC now.
        """
        self.engine = engine
        self.settings = settings or get_settings()
        self.clock = clock

    # ─── Costs ───────────────────────────────────────────────────────────────

    def cost_for(self, provider: ProviderLike, operation: str) -> int:
        """Configured unit cost of one operation.

        Unmapped operations are charged like the provider's most expensive
        known operation, never zero.
        """
        costs = self.settings.operation_costs(Provider(provider).value)
        if operation in costs:
            return costs[operation]
        return max(costs.values(), default=self.settings.unknown_operation_cost)

    def limit_for(self, provider: ProviderLike) -> int:
        return self.settings.quota_limit(Provider(provider).value)

    # ─── Recording ───────────────────────────────────────────────────────────

    def record_usage(
        self,
        provider: ProviderLike,
        operation: str,
        units: Optional[int] = None,
        outcome: QuotaOutcome = QuotaOutcome.SUCCESS,
        error_message: Optional[str] = None,
    ) -> None:
        """Append one usage event. Storage failures are logged, never raised."""
        provider = Provider(provider)
        outcome = QuotaOutcome(outcome)
        if units is None:
            units = self.cost_for(provider, operation)
        event = QuotaUsageEvent(
            provider=provider,
            operation=operation,
            units=units,
            outcome=outcome,
            error_message=error_message,
            created_at=self.clock(),
        )
        try:
            with Session(self.engine) as s:
                s.add(event)
                s.commit()
        except SQLAlchemyError:
            logger.exception(
                "Failed to record quota usage provider=%s operation=%s units=%d",
                provider.value, operation, units,
            )
            return
        logger.debug(
            "Quota usage recorded provider=%s operation=%s units=%d outcome=%s",
            provider.value, operation, units, outcome.value,
        )

    # ─── Queries ─────────────────────────────────────────────────────────────

    def units_consumed(
        self, provider: ProviderLike, window_start: datetime, window_end: datetime
    ) -> int:
        """Sum of units for events in [window_start, window_end)."""
        stmt = select(func.coalesce(func.sum(QuotaUsageEvent.units), 0)).where(
            QuotaUsageEvent.provider == Provider(provider),
            QuotaUsageEvent.created_at >= window_start,
            QuotaUsageEvent.created_at < window_end,
        )
        with Session(self.engine) as s:
            return int(s.exec(stmt).one())

    def current_period(
        self, provider: ProviderLike, now: Optional[datetime] = None
    ) -> Tuple[datetime, datetime]:
        """Bounds of the budget period containing `now`.

        calendar: the day starting at `quota_reset_hour_utc`.
        rolling:  the trailing 24 hours (end nudged past `now` so events
                  stamped exactly at `now` are counted).
        """
        now = now or self.clock()
        if self.settings.quota_period == "rolling":
            return now - PERIOD, now + timedelta(microseconds=1)
        reset = now.replace(
            hour=self.settings.quota_reset_hour_utc, minute=0, second=0, microsecond=0
        )
        if now < reset:
            reset -= PERIOD
        return reset, reset + PERIOD

    def next_period_start(
        self, provider: ProviderLike, now: Optional[datetime] = None
    ) -> datetime:
        """When budget next frees up.

        In rolling mode that is when the oldest event in the window ages out.
        """
        now = now or self.clock()
        start, end = self.current_period(provider, now)
        if self.settings.quota_period != "rolling":
            return end
        stmt = select(func.min(QuotaUsageEvent.created_at)).where(
            QuotaUsageEvent.provider == Provider(provider),
            QuotaUsageEvent.created_at >= start,
        )
        with Session(self.engine) as s:
            oldest = s.exec(stmt).one()
        if oldest is None:
            return now
        return oldest + PERIOD

    def has_budget(self, provider: ProviderLike, required_units: int) -> bool:
        """True if `required_units` fit in the current period's remaining budget."""
        start, end = self.current_period(provider)
        consumed = self.units_consumed(provider, start, end)
        ceiling = self.limit_for(provider) - self.settings.quota_safety_margin
        allowed = consumed + required_units <= ceiling
        logger.debug(
            "Quota check provider=%s required=%d consumed=%d ceiling=%d allowed=%s",
            Provider(provider).value, required_units, consumed, ceiling, allowed,
        )
        return allowed

    def usage_summary(self, provider: ProviderLike) -> Dict[str, Any]:
        """Current-period usage for dashboards, with a safe/warning/critical level."""
        provider = Provider(provider)
        start, end = self.current_period(provider)
        with Session(self.engine) as s:
            events = s.exec(
                select(QuotaUsageEvent).where(
                    QuotaUsageEvent.provider == provider,
                    QuotaUsageEvent.created_at >= start,
                    QuotaUsageEvent.created_at < end,
                )
            ).all()

        total_units = sum(e.units for e in events)
        breakdown: Dict[str, Dict[str, int]] = {}
        for e in events:
            op = breakdown.setdefault(e.operation, {"requests": 0, "units": 0})
            op["requests"] += 1
            op["units"] += e.units

        limit = self.limit_for(provider)
        ratio = total_units / limit if limit else 1.0
        if ratio >= CRITICAL_THRESHOLD:
            level = "critical"
        elif ratio >= WARNING_THRESHOLD:
            level = "warning"
        else:
            level = "safe"

        return {
            "provider": provider.value,
            "period_start": start,
            "period_end": end,
            "limit": limit,
            "total_units": total_units,
            "total_requests": len(events),
            "error_count": sum(1 for e in events if e.outcome == QuotaOutcome.ERROR),
            "remaining_units": max(limit - total_units, 0),
            "usage_percentage": round(ratio * 100, 1),
            "warning_level": level,
            "operation_breakdown": breakdown,
        }
