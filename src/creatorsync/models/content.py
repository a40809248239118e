"""Content models: synchronized items, their categories/tags, and per-item sync metadata."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from creatorsync.models.connection import Provider
from creatorsync.timeutil import utcnow


class Content(SQLModel, table=True):
    """One row per provider item (video, tweet). Upserted by (provider, provider_item_id)."""

    __table_args__ = (UniqueConstraint("provider", "provider_item_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    connection_id: int = Field(foreign_key="platformconnection.id", index=True)
    creator_id: int = Field(index=True)
    provider: Provider
    provider_item_id: str = Field(index=True)

    content_type: str  # "youtube_video", "tweet"
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    published_at: datetime
    duration_seconds: Optional[int] = None
    language: Optional[str] = None
    is_live: bool = False
    quality: Optional[str] = None  # "sd", "hd", "4k"

    # Engagement statistics
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    share_count: Optional[int] = None
    engagement_rate: Optional[float] = None

    # Raw JSON blob for full API response reference
    raw_payload_json: Optional[str] = None

    synced_at: datetime = Field(default_factory=utcnow)

    categories: List["ContentCategory"] = Relationship(back_populates="content")
    tags: List["ContentTag"] = Relationship(back_populates="content")


class ContentCategory(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("content_id", "category"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    content_id: int = Field(foreign_key="content.id", index=True)
    category: str
    is_primary: bool = False
    source: str = "platform"

    content: Optional[Content] = Relationship(back_populates="categories")


class ContentTag(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("content_id", "tag"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    content_id: int = Field(foreign_key="content.id", index=True)
    tag: str

    content: Optional[Content] = Relationship(back_populates="tags")


class ContentSyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class ContentSyncRecord(SQLModel, table=True):
    """
    Freshness metadata for one provider item.

    Keyed by (connection_id, provider_item_id) rather than content id so that
    an item which failed to map (and so has no Content row) is still tracked.
    Non-authorized records always carry an expires_at after last_synced_at.
    """

    __table_args__ = (UniqueConstraint("connection_id", "provider_item_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    connection_id: int = Field(foreign_key="platformconnection.id", index=True)
    provider_item_id: str
    content_id: Optional[int] = Field(default=None, foreign_key="content.id")

    last_synced_at: Optional[datetime] = None
    expires_at: Optional[datetime] = Field(default=None, index=True)
    is_authorized_data: bool = False
    sync_status: ContentSyncStatus = Field(default=ContentSyncStatus.PENDING, index=True)
    sync_error: Optional[str] = None
    sync_retry_count: int = 0
    next_sync_at: Optional[datetime] = Field(default=None, index=True)
