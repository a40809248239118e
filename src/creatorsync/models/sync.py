"""Sync audit log model."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from creatorsync.timeutil import utcnow


class SyncLog(SQLModel, table=True):
    """Records each orchestrator pass for audit and debugging."""

    id: Optional[int] = Field(default=None, primary_key=True)
    connection_id: int = Field(index=True)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    status: str = "running"  # "running" or a PassOutcome value
    pages_fetched: int = 0
    items_synced: int = 0
    items_failed: int = 0
    final_state: Optional[str] = None
    error_message: Optional[str] = None
