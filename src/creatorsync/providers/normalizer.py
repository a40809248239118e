"""
Provider payload normalizer.

Converts raw provider dicts into clean field dicts that map directly onto
the Content, ContentCategory and ContentTag models. No DB access here;
the orchestrator handles persistence.

Every normalize_* function returns:

    {
        "content":    {...Content column values...},
        "categories": [{"category": str, "is_primary": bool, "source": str}],
        "tags":       [str, ...],
    }

and raises MalformedItemError when an item lacks the fields needed to store
it (id, title/text, publish time) or carries values that cannot be parsed.
"""
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from creatorsync.errors import MalformedItemError
from creatorsync.models.connection import Provider

YOUTUBE_CATEGORIES = {
    "1": "Film & Animation",
    "2": "Autos & Vehicles",
    "10": "Music",
    "15": "Pets & Animals",
    "17": "Sports",
    "19": "Travel & Events",
    "20": "Gaming",
    "22": "People & Blogs",
    "23": "Comedy",
    "24": "Entertainment",
    "25": "News & Politics",
    "26": "Howto & Style",
    "27": "Education",
    "28": "Science & Technology",
    "29": "Nonprofits & Activism",
}

_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)

TWEET_TITLE_LENGTH = 100


def parse_provider_datetime(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp ("2024-05-01T12:00:00Z", ".000Z" variants) to naive UTC."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"not a timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_iso_duration(value: Optional[str]) -> Optional[int]:
    """Convert an ISO 8601 duration ("PT1H2M3S", "P0D") to seconds."""
    if not value:
        return None
    match = _ISO_DURATION.match(value)
    if not match:
        raise ValueError(f"not an ISO 8601 duration: {value!r}")
    parts = {k: int(v) for k, v in match.groupdict().items() if v}
    return (
        parts.get("days", 0) * 86400
        + parts.get("hours", 0) * 3600
        + parts.get("minutes", 0) * 60
        + parts.get("seconds", 0)
    )


def _count(value: Any) -> Optional[int]:
    """Provider counters arrive as ints or numeric strings (YouTube)."""
    if value is None:
        return None
    return int(value)


def _engagement_rate(interactions: int, views: Optional[int]) -> float:
    if not views:
        return 0.0
    return min(interactions / views * 100, 100.0)


def youtube_category_name(category_id: Optional[str]) -> Optional[str]:
    if not category_id:
        return None
    return YOUTUBE_CATEGORIES.get(str(category_id), "Other")


def _video_quality(thumbnails: Dict[str, Any]) -> str:
    if thumbnails.get("maxres"):
        return "4k"
    if thumbnails.get("standard") or thumbnails.get("high"):
        return "hd"
    return "sd"


def _thumbnail_url(thumbnails: Dict[str, Any]) -> Optional[str]:
    for size in ("high", "medium", "default"):
        thumb = thumbnails.get(size)
        if thumb and thumb.get("url"):
            return thumb["url"]
    return None


def normalize_youtube_video(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a YouTube Data API v3 `videos.list` item.

    Args:
        raw: Item with snippet, statistics and contentDetails parts.

    Returns:
        {"content", "categories", "tags"} dict (see module docstring).

    Raises:
        MalformedItemError: missing id/title/publishedAt or unparseable values.
    """
    video_id = raw.get("id")
    if not video_id or not isinstance(video_id, str):
        raise MalformedItemError("video has no id")

    snippet = raw.get("snippet") or {}
    statistics = raw.get("statistics") or {}
    details = raw.get("contentDetails") or {}
    thumbnails = snippet.get("thumbnails") or {}

    title = (snippet.get("title") or "").strip()
    if not title:
        raise MalformedItemError("video has no title", video_id)

    try:
        published_at = parse_provider_datetime(snippet.get("publishedAt"))
        duration = parse_iso_duration(details.get("duration"))
        views = _count(statistics.get("viewCount"))
        likes = _count(statistics.get("likeCount"))
        comments = _count(statistics.get("commentCount"))
    except (TypeError, ValueError) as exc:
        raise MalformedItemError(f"unparseable video field: {exc}", video_id) from exc

    content = {
        "provider": Provider.YOUTUBE,
        "provider_item_id": video_id,
        "content_type": "youtube_video",
        "title": title,
        "description": snippet.get("description") or None,
        "url": f"https://www.youtube.com/watch?v={video_id}",
        "thumbnail_url": _thumbnail_url(thumbnails),
        "published_at": published_at,
        "duration_seconds": duration,
        "language": snippet.get("defaultLanguage"),
        "is_live": snippet.get("liveBroadcastContent") == "live",
        "quality": _video_quality(thumbnails),
        "view_count": views,
        "like_count": likes,
        "comment_count": comments,
        "share_count": None,  # not exposed by the Data API
        "engagement_rate": _engagement_rate((likes or 0) + (comments or 0), views),
        "raw_payload_json": json.dumps(raw),
    }

    categories: List[Dict[str, Any]] = []
    category = youtube_category_name(snippet.get("categoryId"))
    if category:
        categories.append({"category": category, "is_primary": True, "source": "platform"})

    tags = _dedupe(t.strip() for t in snippet.get("tags") or [] if isinstance(t, str))
    return {"content": content, "categories": categories, "tags": tags}


def normalize_tweet(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a Twitter API v2 tweet object (with public_metrics and entities).

    Raises:
        MalformedItemError: missing id/text/created_at or unparseable values.
    """
    tweet_id = raw.get("id")
    if not tweet_id or not isinstance(tweet_id, str):
        raise MalformedItemError("tweet has no id")

    text = (raw.get("text") or "").strip()
    if not text:
        raise MalformedItemError("tweet has no text", tweet_id)

    metrics = raw.get("public_metrics") or {}
    try:
        published_at = parse_provider_datetime(raw.get("created_at"))
        views = _count(metrics.get("impression_count"))
        likes = _count(metrics.get("like_count"))
        replies = _count(metrics.get("reply_count"))
        shares = (_count(metrics.get("retweet_count")) or 0) + (
            _count(metrics.get("quote_count")) or 0
        )
    except (TypeError, ValueError) as exc:
        raise MalformedItemError(f"unparseable tweet field: {exc}", tweet_id) from exc

    first_line = text.splitlines()[0]
    content = {
        "provider": Provider.TWITTER,
        "provider_item_id": tweet_id,
        "content_type": "tweet",
        "title": first_line[:TWEET_TITLE_LENGTH],
        "description": text,
        "url": f"https://twitter.com/i/web/status/{tweet_id}",
        "thumbnail_url": None,
        "published_at": published_at,
        "duration_seconds": None,
        "language": raw.get("lang"),
        "is_live": False,
        "quality": None,
        "view_count": views,
        "like_count": likes,
        "comment_count": replies,
        "share_count": shares,
        "engagement_rate": _engagement_rate((likes or 0) + (replies or 0) + shares, views),
        "raw_payload_json": json.dumps(raw),
    }

    hashtags = (raw.get("entities") or {}).get("hashtags") or []
    tags = _dedupe(h.get("tag", "").strip() for h in hashtags if isinstance(h, dict))
    return {"content": content, "categories": [], "tags": tags}


def normalize_item(provider: Provider, raw: Dict[str, Any]) -> Dict[str, Any]:
    if Provider(provider) == Provider.YOUTUBE:
        return normalize_youtube_video(raw)
    return normalize_tweet(raw)


def raw_item_id(raw: Any) -> Optional[str]:
    """Best-effort provider id of a raw item, for tracking items that fail to map."""
    if isinstance(raw, dict) and isinstance(raw.get("id"), str) and raw["id"]:
        return raw["id"]
    return None


def _dedupe(values) -> List[str]:
    seen = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return seen
