"""
Async Twitter/X API v2 client (app-only bearer token).

Timelines come from GET /2/users/:id/tweets, newest first, paged with
`pagination_token`. Incremental polls pass `start_time` so the API only
returns tweets newer than the connection's watermark.
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
    rfc3339,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://api.twitter.com/2"
MIN_PAGE_SIZE = 5
MAX_PAGE_SIZE = 100
TWEET_FIELDS = "created_at,public_metrics,lang,entities"


class TwitterClient:
    provider = "twitter"

    def __init__(
        self,
        bearer_token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=BASE_URL, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {bearer_token}"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._http.get(path, params=params, headers=self._headers)
        raise_for_status(response, self.provider)
        return response.json()

    def operations_for_listing(self, account_id: str) -> List[str]:
        return [PAGE_LISTING]

    async def list_page(
        self,
        account_id: str,
        page_token: Optional[str] = None,
        published_after: Optional[datetime] = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> ProviderPage:
        params = {
            "max_results": max(MIN_PAGE_SIZE, min(page_size, MAX_PAGE_SIZE)),
            "tweet.fields": TWEET_FIELDS,
            "exclude": "retweets,replies",
        }
        if page_token:
            params["pagination_token"] = page_token
        if published_after is not None:
            params["start_time"] = rfc3339(published_after)

        data = await self._get(f"/users/{account_id}/tweets", params)
        meta = data.get("meta") or {}
        items = data.get("data") or []
        logger.debug(
            "Twitter %s: %d tweets, next_token=%s", account_id, len(items), meta.get("next_token")
        )
        # The timeline endpoint reports only the page's result_count, never a catalog size
        return ProviderPage(
            items=items,
            next_page_token=meta.get("next_token"),
            operations=[PAGE_LISTING],
        )

    def operations_for_details(self, ids: List[str]) -> List[str]:
        return [ITEM_DETAIL for _ in chunked(list(ids), MAX_PAGE_SIZE)]

    async def get_item_details(self, ids: List[str]) -> ProviderPage:
        """Current metrics for known tweets. Deleted tweets come back in `errors`, not `data`."""
        items: List[Dict[str, Any]] = []
        operations = []
        for batch in chunked(list(ids), MAX_PAGE_SIZE):
            data = await self._get(
                "/tweets", {"ids": ",".join(batch), "tweet.fields": TWEET_FIELDS}
            )
            operations.append(ITEM_DETAIL)
            items.extend(data.get("data") or [])
        return ProviderPage(items=items, operations=operations)

    async def get_account_summary(self, account_id: str) -> Dict[str, Any]:
        data = await self._get(f"/users/{account_id}", {"user.fields": "public_metrics"})
        user = data.get("data")
        if not user:
            raise ProviderFatalError(f"Twitter user {account_id} not found")
        metrics = user.get("public_metrics") or {}
        return {
            "account_id": account_id,
            "title": user.get("username"),
            "item_count": metrics.get("tweet_count"),
            "follower_count": metrics.get("followers_count"),
            "operations": [CHANNEL_LOOKUP],
        }
