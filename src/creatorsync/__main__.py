"""
Main entrypoint: runs the sync orchestrator under APScheduler.

FastAPI runs separately under uvicorn (status, trigger and consent endpoints).

Usage:
    python -m creatorsync link --creator-id 7 --provider youtube --account-id UC123 [--consent]
    python -m creatorsync               # starts the polling scheduler
    uvicorn creatorsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _link(creator_id: int, provider: str, account_id: str, consent: bool) -> int:
    """Verify an account with its provider and store a NEVER_SYNCED connection."""
    from sqlmodel import Session, select

    from creatorsync.db.engine import get_engine
    from creatorsync.models.connection import PlatformConnection, Provider
    from creatorsync.sync.orchestrator import build_orchestrator

    engine = get_engine()
    orchestrator = build_orchestrator(engine)
    provider = Provider(provider)
    try:
        summary = await orchestrator.providers[provider].get_account_summary(account_id)
    finally:
        await orchestrator.aclose()
    for operation in summary["operations"]:
        orchestrator.ledger.record_usage(provider, operation)

    with Session(engine) as s:
        existing = s.exec(
            select(PlatformConnection).where(
                PlatformConnection.creator_id == creator_id,
                PlatformConnection.provider == provider,
            )
        ).first()
        if existing:
            logger.error(
                "Creator %s already has a %s connection (id=%s)",
                creator_id, provider.value, existing.id,
            )
            return existing.id
        conn = PlatformConnection(
            creator_id=creator_id,
            provider=provider,
            account_id=account_id,
            total_item_count=summary["item_count"],
            data_consent_granted=consent,
        )
        s.add(conn)
        s.commit()
        s.refresh(conn)

    logger.info(
        "Linked %s account %s (%s, %s items) as connection %s",
        provider.value, account_id, summary["title"], summary["item_count"], conn.id,
    )
    return conn.id


async def _run_scheduler() -> None:
    from creatorsync.config import get_settings
    from creatorsync.db.engine import get_engine
    from creatorsync.scheduler.jobs import build_scheduler
    from creatorsync.sync.orchestrator import build_orchestrator

    settings = get_settings()
    engine = get_engine()

    if not settings.youtube_api_key and not settings.twitter_bearer_token:
        logger.error("Neither YOUTUBE_API_KEY nor TWITTER_BEARER_TOKEN is set.")
        sys.exit(1)

    orchestrator = build_orchestrator(engine, settings)
    scheduler = build_scheduler(orchestrator, engine)
    scheduler.start()
    logger.info(
        "Scheduler started (polling every %d minutes, %d passes at a time)",
        settings.poll_interval_minutes, settings.max_concurrent_passes,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await orchestrator.aclose()
        logger.info("Goodbye.")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="creatorsync")
    sub = parser.add_subparsers(dest="command")
    link = sub.add_parser("link", help="Link a creator's provider account")
    link.add_argument("--creator-id", type=int, required=True)
    link.add_argument("--provider", choices=["youtube", "twitter"], required=True)
    link.add_argument("--account-id", required=True, help="YouTube channel id or Twitter user id")
    link.add_argument(
        "--consent", action="store_true", help="Creator granted data consent (no 30-day expiry)"
    )
    args = parser.parse_args(argv)

    if args.command == "link":
        asyncio.run(_link(args.creator_id, args.provider, args.account_id, args.consent))
    else:
        asyncio.run(_run_scheduler())


if __name__ == "__main__":
    main()
