"""
Async YouTube Data API v3 client.

A channel's catalog is listed through its "uploads" playlist rather than
search.list: playlistItems and videos cost 1 unit each, search costs 100.
One listing round is therefore

    channels (first time only) → playlistItems (one page) → videos (details)

The uploads playlist id is cached per channel for the life of the client.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from creatorsync.errors import ProviderFatalError
from creatorsync.providers.http import (
    CHANNEL_LOOKUP,
    ITEM_DETAIL,
    PAGE_LISTING,
    ProviderPage,
    chunked,
    raise_for_status,
)
from creatorsync.providers.normalizer import parse_provider_datetime

logger = logging.getLogger(__name__)

BASE_URL = "https://www.googleapis.com/youtube/v3"
MAX_PAGE_SIZE = 50  # maxResults ceiling for playlistItems and videos
VIDEO_PARTS = "snippet,statistics,contentDetails"


class YouTubeClient:
    provider = "youtube"

    def __init__(
        self,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            api_key: Data API key sent as the `key` query parameter.
            http_client: Pre-built client (tests pass one with a MockTransport).
                         When omitted the client owns and closes its own.
            timeout: Per-request timeout in seconds for the owned client.
        """
        self._api_key = api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=BASE_URL, timeout=timeout)
        self._uploads: Dict[str, str] = {}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._http.get(path, params={**params, "key": self._api_key})
        raise_for_status(response, self.provider)
        return response.json()

    # ─── Listing ─────────────────────────────────────────────────────────────

    def operations_for_listing(self, account_id: str) -> List[str]:
        """Operations one list_page() call will spend, for the pre-call budget check."""
        ops = [PAGE_LISTING, ITEM_DETAIL]
        if account_id not in self._uploads:
            ops.insert(0, CHANNEL_LOOKUP)
        return ops

    async def uploads_playlist_id(self, account_id: str) -> str:
        if account_id in self._uploads:
            return self._uploads[account_id]
        data = await self._get("/channels", {"part": "contentDetails", "id": account_id})
        items = data.get("items") or []
        if not items:
            raise ProviderFatalError(f"YouTube channel {account_id} not found")
        playlist_id = (
            items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")
        )
        if not playlist_id:
            raise ProviderFatalError(f"YouTube channel {account_id} has no uploads playlist")
        self._uploads[account_id] = playlist_id
        return playlist_id

    async def list_page(
        self,
        account_id: str,
        page_token: Optional[str] = None,
        published_after: Optional[datetime] = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> ProviderPage:
        """
        Fetch one page of a channel's uploads with full video details.

        The uploads playlist is newest first, so with `published_after` the
        listing stops (next_page_token=None) at the first older video.
        """
        operations = []
        if account_id not in self._uploads:
            operations.append(CHANNEL_LOOKUP)
        playlist_id = await self.uploads_playlist_id(account_id)

        params = {
            "part": "contentDetails",
            "playlistId": playlist_id,
            "maxResults": max(1, min(page_size, MAX_PAGE_SIZE)),
        }
        if page_token:
            params["pageToken"] = page_token
        listing = await self._get("/playlistItems", params)
        operations.append(PAGE_LISTING)

        next_token = listing.get("nextPageToken")
        video_ids = []
        for entry in listing.get("items") or []:
            details = entry.get("contentDetails") or {}
            video_id = details.get("videoId")
            if not video_id:
                continue
            if published_after is not None and _published_on_or_before(
                details.get("videoPublishedAt"), published_after
            ):
                next_token = None
                break
            video_ids.append(video_id)

        items = []
        if video_ids:
            videos = await self._get("/videos", {"part": VIDEO_PARTS, "id": ",".join(video_ids)})
            operations.append(ITEM_DETAIL)
            items = videos.get("items") or []

        total = (listing.get("pageInfo") or {}).get("totalResults")
        logger.debug(
            "YouTube %s: %d videos, next_token=%s", account_id, len(items), next_token
        )
        return ProviderPage(
            items=items,
            next_page_token=next_token,
            total_results=total,
            operations=operations,
        )

    # ─── Details ─────────────────────────────────────────────────────────────

    def operations_for_details(self, ids: List[str]) -> List[str]:
        return [ITEM_DETAIL for _ in chunked(list(ids), MAX_PAGE_SIZE)]

    async def get_item_details(self, ids: List[str]) -> ProviderPage:
        """Current metadata for known videos. Deleted or private ids are simply absent."""
        items: List[Dict[str, Any]] = []
        operations = []
        for batch in chunked(list(ids), MAX_PAGE_SIZE):
            data = await self._get("/videos", {"part": VIDEO_PARTS, "id": ",".join(batch)})
            operations.append(ITEM_DETAIL)
            items.extend(data.get("items") or [])
        return ProviderPage(items=items, operations=operations)

    async def get_account_summary(self, account_id: str) -> Dict[str, Any]:
        data = await self._get(
            "/channels", {"part": "snippet,statistics,contentDetails", "id": account_id}
        )
        items = data.get("items") or []
        if not items:
            raise ProviderFatalError(f"YouTube channel {account_id} not found")
        channel = items[0]
        uploads = channel.get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")
        if uploads:
            self._uploads[account_id] = uploads
        stats = channel.get("statistics") or {}
        return {
            "account_id": account_id,
            "title": (channel.get("snippet") or {}).get("title"),
            "item_count": int(stats["videoCount"]) if "videoCount" in stats else None,
            "follower_count": (
                int(stats["subscriberCount"]) if "subscriberCount" in stats else None
            ),
            "operations": [CHANNEL_LOOKUP],
        }


def _published_on_or_before(value: Optional[str], cutoff: datetime) -> bool:
    if not value:
        return False
    try:
        return parse_provider_datetime(value) <= cutoff
    except ValueError:
        return False
