"""Source adapters that fetch the current top list of trending sounds.

Each adapter maps its provider's payload onto CollectedSound and raises
SourceError when nothing usable comes back, so the cascade can move on.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings, settings as default_settings
from .errors import SourceError
from .models import CollectedSound, CollectedVideo
from .parser import coerce_count, first_present, dedupe_hashtags

logger = logging.getLogger(__name__)

MAX_SOURCE_VIDEOS = 5

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _first_url(media: Any) -> Optional[str]:
    """First entry of a ``{"url_list": [...]}`` media object."""
    if isinstance(media, dict):
        urls = media.get("url_list") or []
        if urls:
            return _opt_str(urls[0]) if isinstance(urls, list) else None
    return _opt_str(media)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _opt_str(value: Any) -> Optional[str]:
    """A scalar as a string, or None for missing and nested values."""
    if value is None or value == "" or isinstance(value, (dict, list)):
        return None
    return str(value)


def _as_str(value: Any, default: str = "Unknown") -> str:
    text = _opt_str(value)
    return default if text is None else text


class SoundSource(ABC):
    """A provider of the ranked trending-sound list."""

    name: str = ""

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or default_settings
        self._transport = transport

    def _client(self, timeout: float, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, **kwargs)

    @abstractmethod
    async def fetch_top(self) -> List[CollectedSound]:
        """Return the provider's top sounds in rank order, or raise SourceError."""

    def _finish(self, sounds: List[CollectedSound]) -> List[CollectedSound]:
        if not sounds:
            raise SourceError(f"{self.name}: no sounds could be parsed")
        return sounds[: self.config.top_n]


class TikAPISource(SoundSource):
    """Paid TikAPI REST API: explore list plus per-sound example videos."""

    name = "tikapi"

    async def fetch_top(self) -> List[CollectedSound]:
        if not self.config.tikapi_key:
            raise SourceError("TIKAPI_KEY not set")

        headers = {"X-API-KEY": self.config.tikapi_key, "Accept": "application/json"}
        async with self._client(self.config.source_timeout, headers=headers) as client:
            try:
                response = await client.get(
                    f"{self.config.tikapi_base_url}/public/explore",
                    params={"count": self.config.top_n},
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise SourceError(f"TikAPI explore request failed: {e}") from e

            if not isinstance(payload, dict):
                raise SourceError("TikAPI returned an unexpected payload")

            music_list = first_present(payload, "music_list", "aweme_list", "musics", default=[])
            if not isinstance(music_list, list) or not music_list:
                raise SourceError("TikAPI returned no music results")

            sounds = []
            for item in music_list[: self.config.top_n]:
                if not isinstance(item, dict):
                    continue
                music = _as_dict(item.get("music")) or item
                sound_id = _as_str(first_present(music, "id", "mid"), default="")
                if not sound_id:
                    logger.debug("TikAPI item without id skipped")
                    continue

                videos = await self._fetch_sound_videos(client, sound_id)
                sounds.append(
                    CollectedSound(
                        id=sound_id,
                        title=_as_str(music.get("title")),
                        artist=_as_str(first_present(music, "author", "owner_nickname")),
                        duration=coerce_count(music.get("duration")),
                        cover_url=_first_url(first_present(music, "cover_large", "cover_medium")),
                        play_url=_first_url(music.get("play_url")),
                        usage_count=coerce_count(first_present(music, "user_count", "video_count")),
                        videos=videos,
                    )
                )

        return self._finish(sounds)

    async def _fetch_sound_videos(self, client: httpx.AsyncClient, sound_id: str) -> List[CollectedVideo]:
        """Best-effort example videos for one sound."""
        try:
            response = await client.get(
                f"{self.config.tikapi_base_url}/public/music",
                params={"id": sound_id},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"TikAPI videos for {sound_id} unavailable: {e}")
            return []

        items = first_present(payload, "aweme_list", "itemList", default=[]) if isinstance(payload, dict) else []
        if not isinstance(items, list):
            return []

        videos = []
        for item in items[:MAX_SOURCE_VIDEOS]:
            if not isinstance(item, dict):
                continue
            stats = _as_dict(first_present(item, "statistics", "stats"))
            author = _as_dict(item.get("author"))
            video = _as_dict(item.get("video"))
            video_id = first_present(item, "aweme_id", "id")
            if not video_id:
                continue
            videos.append(
                CollectedVideo(
                    video_url=f"https://www.tiktok.com/@{author.get('unique_id') or 'user'}/video/{video_id}",
                    thumbnail_url=_first_url(video.get("cover")) or _opt_str(video.get("dynamicCover")),
                    author_username=_opt_str(author.get("unique_id")),
                    author_nickname=_opt_str(author.get("nickname")),
                    views=coerce_count(first_present(stats, "play_count", "playCount")),
                    likes=coerce_count(first_present(stats, "digg_count", "diggCount")),
                    shares=coerce_count(first_present(stats, "share_count", "shareCount")),
                    comments=coerce_count(first_present(stats, "comment_count", "commentCount")),
                )
            )
        return videos


class CreativeCenterSource(SoundSource):
    """Public Creative Center trending-music page."""

    name = "creative_center"
    url = "https://ads.tiktok.com/business/creativecenter/music/pc/en"

    _PAGE_PROPS_RE = re.compile(r'\{"props":\{"pageProps":(\{[\s\S]*?\})\s*,\s*"__N_SSP"')
    _MUSIC_LIST_RE = re.compile(r'"musicList"\s*:\s*(\[[\s\S]*?\])\s*[,}]')

    async def fetch_top(self) -> List[CollectedSound]:
        headers = {"User-Agent": BROWSER_USER_AGENT, "Accept": "text/html"}
        async with self._client(self.config.source_timeout, headers=headers) as client:
            try:
                response = await client.get(self.url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise SourceError(f"Creative Center request failed: {e}") from e

        music_list = self._extract_music_list(response.text)
        if not music_list:
            raise SourceError("Creative Center: musicList is empty")

        sounds = []
        for item in music_list[: self.config.top_n]:
            if not isinstance(item, dict):
                continue
            sound_id = _as_str(first_present(item, "clipId", "musicId", "id"), default="")
            if not sound_id:
                continue
            sounds.append(
                CollectedSound(
                    id=sound_id,
                    title=_as_str(item.get("title")),
                    artist=_as_str(first_present(item, "singer", "author")),
                    duration=coerce_count(item.get("duration")),
                    cover_url=_opt_str(first_present(item, "posterUrl", "cover")),
                    play_url=_opt_str(first_present(item, "musicUrl", "detail")),
                    usage_count=coerce_count(first_present(item, "usage_amount", "videoCount")),
                )
            )

        return self._finish(sounds)

    def _extract_music_list(self, page_html: str) -> List[Dict[str, Any]]:
        match = self._PAGE_PROPS_RE.search(page_html)
        if match:
            try:
                page_props = json.loads(match.group(1))
            except json.JSONDecodeError as e:
                raise SourceError("Creative Center: failed to parse pageProps") from e
            music_list = page_props.get("musicList") if isinstance(page_props, dict) else None
        else:
            broader = self._MUSIC_LIST_RE.search(page_html)
            if not broader:
                raise SourceError("Creative Center: could not find musicList in page")
            try:
                music_list = json.loads(broader.group(1))
            except json.JSONDecodeError as e:
                raise SourceError("Creative Center: failed to parse musicList") from e

        return music_list if isinstance(music_list, list) else []


class ApifySource(SoundSource):
    """Apify scraper actor, run synchronously."""

    name = "apify"
    base_url = "https://api.apify.com/v2"

    async def fetch_top(self) -> List[CollectedSound]:
        if not self.config.apify_token:
            raise SourceError("APIFY_TOKEN not set")

        actor = self.config.apify_actor.replace("/", "~")
        url = f"{self.base_url}/acts/{actor}/run-sync-get-dataset-items"

        async with self._client(self.config.apify_timeout) as client:
            try:
                response = await client.post(
                    url,
                    params={"token": self.config.apify_token, "memory": 256},
                    json={"maxResults": self.config.top_n},
                )
                response.raise_for_status()
                items = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise SourceError(f"Apify actor run failed: {e}") from e

        if not isinstance(items, list) or not items:
            raise SourceError("Apify returned no results")

        sounds = []
        for item in items[: self.config.top_n]:
            if not isinstance(item, dict):
                continue
            sound_id = _as_str(first_present(item, "musicId", "id", "soundId"), default="")
            if not sound_id:
                continue

            raw_hashtags = item.get("hashtags")
            hashtags = []
            for tag in raw_hashtags if isinstance(raw_hashtags, list) else []:
                name = tag if isinstance(tag, str) else _as_dict(tag).get("name")
                if isinstance(name, str):
                    hashtags.append(name)

            sounds.append(
                CollectedSound(
                    id=sound_id,
                    title=_as_str(first_present(item, "title", "musicTitle")),
                    artist=_as_str(first_present(item, "artist", "authorName", "author")),
                    duration=coerce_count(item.get("duration")),
                    cover_url=_opt_str(first_present(item, "coverUrl", "coverImage", "cover")),
                    play_url=_opt_str(first_present(item, "playUrl", "musicUrl")),
                    usage_count=coerce_count(first_present(item, "usageCount", "videoCount", "userCount")),
                    videos=self._parse_videos(first_present(item, "videos", "exampleVideos", default=[])),
                    hashtags=dedupe_hashtags(hashtags),
                )
            )

        return self._finish(sounds)

    def _parse_videos(self, raw_videos: Any) -> List[CollectedVideo]:
        videos = []
        for v in (raw_videos if isinstance(raw_videos, list) else [])[:MAX_SOURCE_VIDEOS]:
            if not isinstance(v, dict):
                continue
            video_url = _opt_str(first_present(v, "url", "videoUrl", "webVideoUrl"))
            if not video_url:
                continue
            stats = _as_dict(first_present(v, "stats", "statistics"))
            videos.append(
                CollectedVideo(
                    video_url=video_url,
                    thumbnail_url=_opt_str(first_present(v, "thumbnail", "thumbnailUrl")),
                    author_username=_opt_str(first_present(v, "authorUsername", "author")),
                    author_nickname=_opt_str(first_present(v, "authorNickname", "authorName")),
                    views=coerce_count(first_present(stats, "plays", "views") or first_present(v, "plays", "views")),
                    likes=coerce_count(first_present(stats, "likes", "diggs") or first_present(v, "likes", "diggs")),
                    shares=coerce_count(first_present(stats, "shares") or v.get("shares")),
                    comments=coerce_count(first_present(stats, "comments") or v.get("comments")),
                )
            )
        return videos


SOURCE_TYPES = {
    TikAPISource.name: TikAPISource,
    CreativeCenterSource.name: CreativeCenterSource,
    ApifySource.name: ApifySource,
}


def build_sources(config: Optional[Settings] = None) -> List[SoundSource]:
    """Instantiate the configured sources in priority order."""
    config = config or default_settings
    sources = []
    for name in config.source_list:
        source_type = SOURCE_TYPES.get(name)
        if source_type is None:
            logger.warning(f"Unknown source '{name}' ignored")
            continue
        sources.append(source_type(config))
    return sources
