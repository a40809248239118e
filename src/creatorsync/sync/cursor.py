"""
PageCursorStore: persists provider pagination tokens per platform connection.

Bound to the caller's Session so a cursor is committed in the same
transaction as the page that produced it. Tokens are opaque: whatever the
provider returned, stored and handed back untouched.

A missing cursor while a connection is crawling is not an error; the
orchestrator restarts that crawl from the first page, which is safe because
every page is an idempotent upsert keyed by provider item id.
"""
from typing import Optional

from sqlmodel import Session

from creatorsync.models.connection import PlatformConnection


class PageCursorStore:
    def __init__(self, session: Session):
        self.session = session

    def _get(self, connection_id: int) -> PlatformConnection:
        conn = self.session.get(PlatformConnection, connection_id)
        if conn is None:
            raise LookupError(f"Platform connection {connection_id} not found")
        return conn

    def save(self, connection_id: int, token: str) -> None:
        if not isinstance(token, str) or not token:
            raise ValueError(f"Cursor token must be a non-empty string, got {token!r}")
        conn = self._get(connection_id)
        conn.page_cursor = token
        self.session.add(conn)

    def load(self, connection_id: int) -> Optional[str]:
        return self._get(connection_id).page_cursor

    def clear(self, connection_id: int) -> None:
        conn = self._get(connection_id)
        conn.page_cursor = None
        self.session.add(conn)
