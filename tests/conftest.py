"""Shared test fixtures."""
import copy
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from creatorsync.config import Settings
# Import all models so SQLModel.metadata knows about them
from creatorsync.models.connection import PlatformConnection, Provider  # noqa: F401
from creatorsync.models.content import Content, ContentCategory, ContentSyncRecord, ContentTag  # noqa: F401
from creatorsync.models.quota import QuotaUsageEvent  # noqa: F401
from creatorsync.models.sync import SyncLog  # noqa: F401
from creatorsync.providers.http import ProviderPage

FIXTURES_DIR = Path(__file__).parent / "fixtures"

NOW = datetime(2025, 3, 10, 12, 0)

YOUTUBE_VIDEO = json.loads((FIXTURES_DIR / "youtube_video.json").read_text())
TWEET = json.loads((FIXTURES_DIR / "twitter_tweet.json").read_text())


class FakeClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        youtube_api_key="test-key",
        twitter_bearer_token="test-token",
    )


# ─── Factories ────────────────────────────────────────────────────────────────

@pytest.fixture(name="make_connection")
def make_connection_fixture(engine):
    """Persist a PlatformConnection and return its id."""

    def _make(**overrides) -> int:
        fields = {
            "creator_id": 1,
            "provider": Provider.YOUTUBE,
            "account_id": "UCuAXFkgsw1L7xaCfnd5JJOw",
        }
        fields.update(overrides)
        with Session(engine) as s:
            conn = PlatformConnection(**fields)
            s.add(conn)
            s.commit()
            s.refresh(conn)
            return conn.id

    return _make


@pytest.fixture(name="make_video")
def make_video_fixture():
    """Build a videos.list item derived from the recorded fixture."""

    def _make(video_id: str, published_at: str = "2025-02-14T17:30:05Z", **snippet) -> dict:
        video = copy.deepcopy(YOUTUBE_VIDEO)
        video["id"] = video_id
        video["snippet"]["publishedAt"] = published_at
        video["snippet"]["title"] = f"Video {video_id}"
        video["snippet"].update(snippet)
        return video

    return _make


@pytest.fixture(name="make_page")
def make_page_fixture(make_video):
    """Build a ProviderPage of `count` videos with ids prefix-0 .. prefix-(count-1)."""

    def _make(count: int, prefix: str = "vid", next_token=None, total=None) -> ProviderPage:
        return ProviderPage(
            items=[make_video(f"{prefix}-{i}") for i in range(count)],
            next_page_token=next_token,
            total_results=total,
            operations=["page_listing", "item_detail"],
        )

    return _make


# ─── Provider client doubles ──────────────────────────────────────────────────

@pytest.fixture(name="youtube_client")
def youtube_client_fixture():
    """Stand-in for YouTubeClient: sync cost estimates, async provider calls."""
    client = MagicMock()
    client.operations_for_listing.return_value = ["page_listing", "item_detail"]
    client.operations_for_details.side_effect = lambda ids: ["item_detail"]
    client.list_page = AsyncMock(return_value=ProviderPage(items=[], operations=["page_listing"]))
    client.get_item_details = AsyncMock(
        return_value=ProviderPage(items=[], operations=["item_detail"])
    )
    return client


@pytest.fixture(name="sleep")
def sleep_fixture():
    return AsyncMock()


@pytest.fixture(name="orchestrator")
def orchestrator_fixture(engine, youtube_client, settings, clock, sleep):
    from creatorsync.sync.orchestrator import SyncOrchestrator

    return SyncOrchestrator(
        engine,
        {Provider.YOUTUBE: youtube_client},
        settings=settings,
        clock=clock,
        sleep=sleep,
    )
