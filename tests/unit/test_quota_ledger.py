"""Tests for QuotaLedger: costs, periods, budget checks and usage summaries."""
import logging
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from creatorsync.models.connection import Provider
from creatorsync.models.quota import QuotaOutcome, QuotaUsageEvent
from creatorsync.sync.quota import QuotaLedger


@pytest.fixture
def ledger(engine, settings, clock):
    return QuotaLedger(engine, settings, clock=clock)


def add_event(engine, provider, units, created_at, operation="page_listing", outcome=QuotaOutcome.SUCCESS):
    with Session(engine) as s:
        s.add(QuotaUsageEvent(
            provider=provider, operation=operation, units=units,
            outcome=outcome, created_at=created_at,
        ))
        s.commit()


class TestCosts:
    def test_configured_cost(self, ledger):
        assert ledger.cost_for(Provider.YOUTUBE, "page_listing") == 1
        assert ledger.cost_for("youtube", "search") == 100

    def test_unknown_operation_charged_at_most_expensive(self, ledger):
        assert ledger.cost_for(Provider.YOUTUBE, "captions.download") == 100
        assert ledger.cost_for(Provider.TWITTER, "mystery") == 1

    def test_unknown_operation_with_empty_table_uses_fallback(self, engine, settings):
        settings.twitter_operation_costs = {}
        ledger = QuotaLedger(engine, settings)
        assert ledger.cost_for(Provider.TWITTER, "anything") == settings.unknown_operation_cost

    def test_limits_per_provider(self, ledger):
        assert ledger.limit_for(Provider.YOUTUBE) == 10000
        assert ledger.limit_for(Provider.TWITTER) == 300


class TestRecordUsage:
    def test_appends_one_event_per_call(self, ledger, engine, clock):
        ledger.record_usage(Provider.YOUTUBE, "page_listing")
        ledger.record_usage(Provider.YOUTUBE, "page_listing")
        with Session(engine) as s:
            events = s.exec(select(QuotaUsageEvent)).all()
        assert len(events) == 2
        assert all(e.units == 1 and e.created_at == clock.now for e in events)

    def test_explicit_units_and_error_outcome(self, ledger, engine):
        ledger.record_usage(
            "youtube", "search", units=150, outcome=QuotaOutcome.ERROR, error_message="503"
        )
        with Session(engine) as s:
            event = s.exec(select(QuotaUsageEvent)).one()
        assert event.units == 150
        assert event.outcome == QuotaOutcome.ERROR
        assert event.error_message == "503"

    def test_success_is_logged_after_commit(self, ledger, caplog):
        with caplog.at_level(logging.DEBUG, logger="creatorsync.sync.quota"):
            ledger.record_usage(Provider.YOUTUBE, "page_listing", outcome="success")
        assert "operation=page_listing units=1 outcome=success" in caplog.text

    def test_storage_failure_is_swallowed(self, ledger):
        with patch("creatorsync.sync.quota.Session") as mock_session:
            mock_session.return_value.__enter__.return_value.commit.side_effect = OperationalError(
                "INSERT", {}, Exception("database is locked")
            )
            # Should not raise
            ledger.record_usage(Provider.YOUTUBE, "page_listing")


class TestPeriods:
    def test_calendar_period_after_reset_hour(self, ledger):
        start, end = ledger.current_period(Provider.YOUTUBE, datetime(2025, 3, 10, 12, 0))
        assert start == datetime(2025, 3, 10, 8, 0)
        assert end == datetime(2025, 3, 11, 8, 0)

    def test_calendar_period_before_reset_hour(self, ledger):
        start, end = ledger.current_period(Provider.YOUTUBE, datetime(2025, 3, 10, 3, 0))
        assert start == datetime(2025, 3, 9, 8, 0)
        assert end == datetime(2025, 3, 10, 8, 0)

    def test_next_period_start_calendar(self, ledger):
        assert ledger.next_period_start(Provider.YOUTUBE) == datetime(2025, 3, 11, 8, 0)

    def test_rolling_period_counts_last_24_hours(self, engine, settings, clock):
        settings.quota_period = "rolling"
        ledger = QuotaLedger(engine, settings, clock=clock)
        add_event(engine, Provider.TWITTER, 5, clock.now - timedelta(hours=25))
        add_event(engine, Provider.TWITTER, 7, clock.now - timedelta(hours=3))
        add_event(engine, Provider.TWITTER, 1, clock.now)
        start, end = ledger.current_period(Provider.TWITTER)
        assert ledger.units_consumed(Provider.TWITTER, start, end) == 8
        assert ledger.next_period_start(Provider.TWITTER) == clock.now + timedelta(hours=21)


class TestBudget:
    def test_units_consumed_is_half_open_and_per_provider(self, ledger, engine):
        start = datetime(2025, 3, 10, 8, 0)
        end = start + timedelta(days=1)
        add_event(engine, Provider.YOUTUBE, 3, start)
        add_event(engine, Provider.YOUTUBE, 4, end)
        add_event(engine, Provider.TWITTER, 9, start)
        assert ledger.units_consumed(Provider.YOUTUBE, start, end) == 3

    def test_has_budget_respects_safety_margin(self, ledger, engine, clock):
        add_event(engine, Provider.YOUTUBE, 9940, clock.now)
        assert ledger.has_budget(Provider.YOUTUBE, 10)  # 9950 == 10000 - 50
        assert not ledger.has_budget(Provider.YOUTUBE, 11)

    def test_previous_period_does_not_count(self, ledger, engine, clock):
        add_event(engine, Provider.YOUTUBE, 10000, clock.now - timedelta(days=1))
        assert ledger.has_budget(Provider.YOUTUBE, 100)

    def test_providers_have_separate_budgets(self, ledger, engine, clock):
        add_event(engine, Provider.TWITTER, 300, clock.now)
        assert not ledger.has_budget(Provider.TWITTER, 1)
        assert ledger.has_budget(Provider.YOUTUBE, 1)


class TestUsageSummary:
    def test_summary_breakdown_and_level(self, ledger, engine, clock):
        add_event(engine, Provider.TWITTER, 200, clock.now, operation="page_listing")
        add_event(engine, Provider.TWITTER, 50, clock.now, operation="item_detail")
        add_event(
            engine, Provider.TWITTER, 1, clock.now, operation="item_detail",
            outcome=QuotaOutcome.ERROR,
        )
        summary = ledger.usage_summary(Provider.TWITTER)
        assert summary["total_units"] == 251
        assert summary["total_requests"] == 3
        assert summary["error_count"] == 1
        assert summary["remaining_units"] == 49
        assert summary["warning_level"] == "warning"
        assert summary["operation_breakdown"]["item_detail"] == {"requests": 2, "units": 51}

    def test_empty_summary_is_safe(self, ledger):
        summary = ledger.usage_summary(Provider.YOUTUBE)
        assert summary["total_units"] == 0
        assert summary["usage_percentage"] == 0.0
        assert summary["warning_level"] == "safe"

    def test_critical_level(self, ledger, engine, clock):
        add_event(engine, Provider.TWITTER, 290, clock.now)
        assert ledger.usage_summary(Provider.TWITTER)["warning_level"] == "critical"
