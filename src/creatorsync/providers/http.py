"""Shared httpx helpers for the provider clients: response status → SyncError."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import httpx

from creatorsync.errors import (
    AuthorizationRevokedError,
    ProviderFatalError,
    QuotaExceededError,
    TransientNetworkError,
)

# Error reasons YouTube reports with a 403 when the *project* quota is spent
QUOTA_REASONS = frozenset({"quotaExceeded", "dailyLimitExceeded"})
# Short-term throttling YouTube reports as 403 rather than 429
RATE_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})

# Operation names shared with the quota cost tables in config
CHANNEL_LOOKUP = "channel_lookup"
PAGE_LISTING = "page_listing"
ITEM_DETAIL = "item_detail"


@dataclass
class ProviderPage:
    """Raw items from one provider round, plus the operations it spent."""

    items: List[Dict[str, Any]]
    next_page_token: Optional[str] = None
    total_results: Optional[int] = None
    operations: List[str] = field(default_factory=list)


def rfc3339(value: datetime) -> str:
    """Naive-UTC datetime → "2024-05-01T12:00:00Z"."""
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def chunked(values: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


def _error_reasons(response: httpx.Response) -> Iterable[str]:
    """Pull Google-style error reasons out of a JSON error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return []
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return []
    return [e.get("reason", "") for e in error.get("errors", []) if isinstance(e, dict)]


def raise_for_status(response: httpx.Response, provider: str) -> None:
    """Raise the sync error matching a non-2xx provider response."""
    status = response.status_code
    if status < 400:
        return
    detail = f"{provider} API {response.request.method} {response.request.url.path} → {status}"

    if status == 429 or status >= 500:
        raise TransientNetworkError(detail)
    if status == 401:
        raise AuthorizationRevokedError(detail)
    if status == 403:
        reasons = set(_error_reasons(response))
        if reasons & QUOTA_REASONS:
            raise QuotaExceededError(detail)
        if reasons & RATE_REASONS:
            raise TransientNetworkError(detail)
        raise AuthorizationRevokedError(detail)
    raise ProviderFatalError(detail)
