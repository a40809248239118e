"""Quota usage events: append-only record of every outbound provider call."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from creatorsync.models.connection import Provider
from creatorsync.timeutil import utcnow


class QuotaOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class QuotaUsageEvent(SQLModel, table=True):
    """Immutable once written. Only a retention job may delete rows."""

    __table_args__ = (Index("ix_quota_provider_created", "provider", "created_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: Provider
    operation: str  # "channel_lookup", "page_listing", "item_detail", "search"
    units: int
    outcome: QuotaOutcome = QuotaOutcome.SUCCESS
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
