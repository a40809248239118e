from typing import Dict, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    database_url: str = "sqlite:///./creatorsync.db"
    youtube_api_key: str = ""
    twitter_bearer_token: str = ""

    # Quota budgets are per provider, per period
    youtube_quota_limit: int = 10000
    twitter_quota_limit: int = 300
    youtube_operation_costs: Dict[str, int] = {
        "channel_lookup": 1,
        "page_listing": 1,
        "item_detail": 1,
        "search": 100,
    }
    twitter_operation_costs: Dict[str, int] = {
        "channel_lookup": 1,
        "page_listing": 1,
        "item_detail": 1,
        "search": 1,
    }
    unknown_operation_cost: int = 100
    quota_safety_margin: int = 50
    quota_period: Literal["calendar", "rolling"] = "calendar"
    quota_reset_hour_utc: int = 8  # midnight US/Pacific (PST)

    # Authorized-data policy: non-consented data expires after this window
    retention_days: int = 30

    # Crawl shape
    page_size: int = 50
    pages_per_pass: int = 1
    incremental_page_ceiling: int = 3
    refresh_batch_size: int = 50

    # Failure handling
    failure_ceiling: int = 3
    retry_backoff_base_seconds: float = 2.0
    retry_backoff_max_seconds: float = 300.0
    item_backoff_base_seconds: float = 600.0
    item_backoff_max_seconds: float = 86400.0
    provider_timeout_seconds: float = 30.0

    # Scheduling
    poll_interval_minutes: int = 60
    # Backfills and unpaused crawls continue on this shorter interval
    crawl_interval_minutes: int = 2
    max_concurrent_passes: int = 4
    due_batch_size: int = 100

    def quota_limit(self, provider: str) -> int:
        return {
            "youtube": self.youtube_quota_limit,
            "twitter": self.twitter_quota_limit,
        }.get(provider, 0)

    def operation_costs(self, provider: str) -> Dict[str, int]:
        return {
            "youtube": self.youtube_operation_costs,
            "twitter": self.twitter_operation_costs,
        }.get(provider, {})


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
