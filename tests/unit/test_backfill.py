"""Tests for the backfill script.

_backfill() is exercised with a mocked orchestrator: each run_pass() call
returns the next PassResult from a scripted list.

Key behaviours:
  - Passes run back to back until the crawl settles
  - A pass needing outside help (quota, re-consent, failure) stops the run
  - max_passes bounds a crawl that never settles
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from creatorsync.models.connection import PassOutcome
from creatorsync.scripts.backfill import _backfill
from creatorsync.sync.orchestrator import PassResult


def make_orchestrator(*outcomes):
    orchestrator = MagicMock()
    orchestrator.run_pass = AsyncMock(
        side_effect=[PassResult(7, outcome, pages_fetched=1) for outcome in outcomes]
    )
    return orchestrator


class TestBackfillScript:
    @pytest.mark.asyncio
    async def test_runs_until_completed(self):
        orchestrator = make_orchestrator(
            PassOutcome.PROGRESSED, PassOutcome.PROGRESSED, PassOutcome.COMPLETED
        )
        result = await _backfill(orchestrator, 7, max_passes=10, pause=0)

        assert result.outcome == PassOutcome.COMPLETED
        assert orchestrator.run_pass.await_count == 3
        orchestrator.run_pass.assert_awaited_with(7)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", [
        PassOutcome.QUOTA_EXHAUSTED,
        PassOutcome.NEEDS_RECONSENT,
        PassOutcome.RETRY_PENDING,
        PassOutcome.SYNC_FAILED,
        PassOutcome.UP_TO_DATE,
    ])
    async def test_stops_when_pass_cannot_progress(self, outcome):
        orchestrator = make_orchestrator(PassOutcome.PROGRESSED, outcome, PassOutcome.PROGRESSED)
        result = await _backfill(orchestrator, 7, max_passes=10, pause=0)

        assert result.outcome == outcome
        assert orchestrator.run_pass.await_count == 2

    @pytest.mark.asyncio
    async def test_max_passes_bounds_the_run(self):
        orchestrator = make_orchestrator(*[PassOutcome.PROGRESSED] * 5)
        result = await _backfill(orchestrator, 7, max_passes=3, pause=0)

        assert result.outcome == PassOutcome.PROGRESSED
        assert orchestrator.run_pass.await_count == 3

    @pytest.mark.asyncio
    async def test_sleep_called_between_passes(self):
        orchestrator = make_orchestrator(
            PassOutcome.PROGRESSED, PassOutcome.PROGRESSED, PassOutcome.COMPLETED
        )
        mock_sleep = AsyncMock()
        with patch("creatorsync.scripts.backfill.asyncio.sleep", mock_sleep):
            await _backfill(orchestrator, 7, max_passes=10, pause=2.5)

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(2.5)


class TestBackfillMain:
    """Tests for the CLI entrypoint."""

    def test_main_calls_asyncio_run(self):
        captured = {}

        def capture_and_close(coro):
            captured["coro"] = coro
            coro.close()  # prevent RuntimeWarning about unawaited coroutine

        with patch("creatorsync.scripts.backfill.asyncio.run", side_effect=capture_and_close), \
             patch("sys.argv", ["backfill", "--connection-id", "7"]):
            from creatorsync.scripts.backfill import main
            main()

        assert "coro" in captured

    def test_connection_id_is_required(self):
        with patch("sys.argv", ["backfill"]):
            from creatorsync.scripts.backfill import main
            with pytest.raises(SystemExit):
                main()
