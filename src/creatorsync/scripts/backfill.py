"""
Backfill script: drive one connection's crawl until it reaches steady state.

Usage:
    python -m creatorsync.scripts.backfill --connection-id 12 [--max-passes 500]

Runs passes back to back instead of waiting for the scheduler. Stops when the
connection reaches INCREMENTAL, or when a pass ends in a state that needs
outside help (quota exhausted, re-consent, failed).
"""
import argparse
import asyncio
import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

SLEEP_BETWEEN_PASSES = 1.0
DEFAULT_MAX_PASSES = 500


async def _backfill(orchestrator, connection_id: int, max_passes: int, pause: float = SLEEP_BETWEEN_PASSES):
    """
    Run passes until the crawl settles.

    Returns:
        The last PassResult, or None if no pass ran.
    """
    from creatorsync.models.connection import PassOutcome

    stop = {
        PassOutcome.COMPLETED,
        PassOutcome.UP_TO_DATE,
        PassOutcome.QUOTA_EXHAUSTED,
        PassOutcome.NEEDS_RECONSENT,
        PassOutcome.RETRY_PENDING,
        PassOutcome.SYNC_FAILED,
    }
    result = None
    for n in range(1, max_passes + 1):
        result = await orchestrator.run_pass(connection_id)
        logger.info(
            "Pass %d: %s (pages=%d items=%d failed=%d)",
            n, result.outcome.value, result.pages_fetched, result.items_synced, result.items_failed,
        )
        if result.outcome in stop:
            break
        await asyncio.sleep(pause)
    else:
        logger.warning("Stopped after %d passes; crawl still running", max_passes)
    return result


async def _main(connection_id: int, max_passes: int) -> None:
    from creatorsync.db.engine import get_engine
    from creatorsync.sync.orchestrator import build_orchestrator

    orchestrator = build_orchestrator(get_engine())
    try:
        result = await _backfill(orchestrator, connection_id, max_passes)
    finally:
        await orchestrator.aclose()
    if result is not None:
        logger.info("Backfill finished with %s", result.outcome.value)


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill one platform connection")
    parser.add_argument("--connection-id", type=int, required=True)
    parser.add_argument(
        "--max-passes",
        type=int,
        default=DEFAULT_MAX_PASSES,
        help=f"Upper bound on passes (default: {DEFAULT_MAX_PASSES})",
    )
    args = parser.parse_args()
    asyncio.run(_main(args.connection_id, args.max_passes))


if __name__ == "__main__":
    main()
