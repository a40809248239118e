"""Clock helpers. All persisted timestamps are naive UTC (SQLite drops tzinfo)."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
