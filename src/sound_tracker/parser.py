"""Parsers for scraped TikTok pages and human-readable counts."""

import html as html_lib
import json
import math
import re
import logging
import unicodedata
from typing import Any, Dict, Iterable, List, Optional

from .models import EnrichedVideo, PageData, PageParseResult

logger = logging.getLogger(__name__)

REHYDRATION_MARKER = "__UNIVERSAL_DATA_FOR_REHYDRATION__"
MAX_PAGE_VIDEOS = 6

_HASHTAG_RE = re.compile(r"#[\w\u00C0-\u024F]+", re.ASCII)
_HUMAN_COUNT_RE = re.compile(r"([\d.]+)\s*([kKmMbB])?")
_OG_DESCRIPTION_RES = [
    re.compile(r'property="og:description"\s+content="([^"]*)"'),
    re.compile(r'content="([^"]*)"\s+property="og:description"'),
]
_OG_VIDEOS_RE = re.compile(r"^([\d.,]+\s*[kKmMbB]?)\s+videos")
_REHYDRATION_RE = re.compile(
    r'<script[^>]*id="' + REHYDRATION_MARKER + r'"[^>]*>([\s\S]*?)</script>'
)

_SUFFIX_MULTIPLIERS = {"k": 1_000, "m": 1_000_000, "b": 1_000_000_000}


def slugify(title: str) -> str:
    """
    Build the URL slug TikTok uses for a sound title.

    Examples:
        "Midnight Trap Anthem" -> "midnight-trap-anthem"
        "original sound - dj x!" -> "original-sound-dj-x"
    """
    if not title:
        return ""

    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def sound_page_url(sound_id: str, title: str) -> str:
    """Canonical music page for a sound."""
    slug = slugify(title)
    return f"https://www.tiktok.com/music/{slug}-{sound_id}" if slug else f"https://www.tiktok.com/music/-{sound_id}"


def normalize_hashtag(tag: str) -> str:
    """Lowercase a tag and drop a leading '#' and invisible characters."""
    tag = unicodedata.normalize("NFKC", tag or "")
    tag = re.sub(r'[\u200b-\u200f\u2028-\u202f\ufeff\u00ad]', '', tag)
    return tag.strip().lstrip("#").lower()


def dedupe_hashtags(tags: Iterable[str]) -> List[str]:
    """Normalize tags and drop case-insensitive duplicates, keeping first-seen order."""
    seen = set()
    result = []
    for tag in tags:
        normalized = normalize_hashtag(tag)
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result


def extract_hashtags(text: str) -> List[str]:
    """Extract lowercase hashtags from free text, deduplicated."""
    if not text:
        return []
    return dedupe_hashtags(match[1:] for match in _HASHTAG_RE.findall(text))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_human_count(text: str) -> int:
    """
    Parse a human-readable count into an integer.

    Examples:
        "266.5k" -> 266500
        "2.4M" -> 2400000
        "900" -> 900
    """
    if not text:
        return 0

    match = _HUMAN_COUNT_RE.search(text.replace(",", ""))
    if not match:
        return 0

    try:
        number = float(match.group(1))
    except ValueError:
        return 0

    suffix = (match.group(2) or "").lower()
    return _round_half_up(number * _SUFFIX_MULTIPLIERS.get(suffix, 1))


def coerce_count(value: Any) -> int:
    """Convert a provider count (int, float, numeric or human-readable string) to an int."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, _round_half_up(value))
    if isinstance(value, str):
        return parse_human_count(value.strip())
    return 0


def first_present(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first value among ``keys`` that is present and not None."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def parse_og_usage_count(page_html: str) -> Optional[int]:
    """
    Read the usage count from the og:description meta tag.

    The description starts with e.g. "266.5k videos - Watch awesome...".
    Returns None when the tag or the count is missing.
    """
    description = None
    for pattern in _OG_DESCRIPTION_RES:
        match = pattern.search(page_html or "")
        if match:
            description = html_lib.unescape(match.group(1)).strip()
            break

    if not description:
        logger.debug("og:description not found")
        return None

    count_match = _OG_VIDEOS_RE.match(description)
    if not count_match:
        logger.debug(f"Unrecognized og:description: {description[:80]}")
        return None

    return parse_human_count(count_match.group(1))


def _video_from_item(item: Dict[str, Any]) -> Optional[EnrichedVideo]:
    video_id = item.get("id")
    if not video_id:
        return None

    author = item.get("author") if isinstance(item.get("author"), dict) else {}
    username = author.get("uniqueId")
    stats = item.get("stats") if isinstance(item.get("stats"), dict) else {}
    video = item.get("video") if isinstance(item.get("video"), dict) else {}

    return EnrichedVideo(
        video_url=f"https://www.tiktok.com/@{username or 'user'}/video/{video_id}",
        thumbnail_url=first_present(video, "cover", "dynamicCover", "originCover"),
        author_username=username,
        author_nickname=author.get("nickname"),
        author_avatar_url=first_present(author, "avatarMedium", "avatarThumb"),
        description=item.get("desc") or None,
        create_time=coerce_count(item.get("createTime")) or None,
        views=coerce_count(stats.get("playCount")),
        likes=coerce_count(first_present(stats, "diggCount", "heartCount")),
        shares=coerce_count(stats.get("shareCount")),
        comments=coerce_count(stats.get("commentCount")),
    )


def parse_music_detail(page_html: str) -> PageParseResult:
    """
    Parse example videos and hashtags from the rehydration blob of a music page.

    The key path ``__DEFAULT_SCOPE__ -> webapp.music-detail -> itemList`` is
    versioned upstream; when it is absent the page is reported as an
    ``unsupported_shape`` rather than raising.
    """
    match = _REHYDRATION_RE.search(page_html or "")
    if not match or not match.group(1).strip():
        return PageParseResult(reason="marker_not_found")

    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.debug(f"Rehydration JSON decode error: {e}")
        return PageParseResult(reason="invalid_json")

    scope = data.get("__DEFAULT_SCOPE__") if isinstance(data, dict) else None
    detail = scope.get("webapp.music-detail") if isinstance(scope, dict) else None
    if not isinstance(detail, dict):
        return PageParseResult(reason="unsupported_shape")

    item_list = detail.get("itemList") or []
    if not isinstance(item_list, list):
        return PageParseResult(reason="unsupported_shape")

    videos: List[EnrichedVideo] = []
    tags: List[str] = []

    for item in item_list[:MAX_PAGE_VIDEOS]:
        if not isinstance(item, dict):
            continue

        video = _video_from_item(item)
        if video:
            videos.append(video)

        tags.extend(extract_hashtags(item.get("desc") or ""))
        for extra in item.get("textExtra") or []:
            if isinstance(extra, dict) and extra.get("hashtagName"):
                tags.append(extra["hashtagName"])

    return PageParseResult(data=PageData(videos=videos, hashtags=dedupe_hashtags(tags)))
