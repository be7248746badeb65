"""Live enrichment of a single sound from its TikTok music page.

Two passes run concurrently against the same URL:

- the metadata pass requests the page as a link-preview crawler, which TikTok
  always answers with Open Graph tags; it yields the usage count and is
  required for enrichment to succeed;
- the full-page pass loads the page in a headless browser and reads the
  embedded rehydration data for example videos and hashtags; it is often
  blocked from datacenter IPs and only ever degrades the result.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import httpx

from .config import Settings, settings as default_settings
from .errors import EnrichmentError
from .fetcher import BrowserFetcher, get_browser_fetcher
from .models import EnrichmentResult, PageData, Sound
from .parser import parse_music_detail, parse_og_usage_count, sound_page_url

logger = logging.getLogger(__name__)

CRAWLER_USER_AGENT = "facebookexternalhit/1.1"

MetadataPass = Tuple[bool, Optional[int], Optional[str]]
PagePass = Tuple[bool, Optional[PageData], Optional[str]]


def merge_passes(metadata: MetadataPass, page: PagePass) -> EnrichmentResult:
    """
    Combine both pass results.

    The metadata pass is required and authoritative for usage_count; the
    full-page pass only contributes videos and hashtags when it succeeded.
    """
    meta_ok, usage_count, meta_error = metadata
    if not meta_ok or usage_count is None:
        raise EnrichmentError(meta_error or "metadata unavailable")

    page_ok, page_data, _ = page
    if not page_ok or page_data is None:
        return EnrichmentResult(usage_count=usage_count)

    return EnrichmentResult(
        usage_count=usage_count,
        videos=page_data.videos,
        hashtags=page_data.hashtags,
        page_available=True,
    )


def is_fresh(sound: Sound, videos_count: int, now: Optional[datetime] = None, stale_hours: int = 6) -> bool:
    """True when the sound was enriched recently and already has usage and videos."""
    if not sound.enriched_at or sound.usage_count == 0 or videos_count == 0:
        return False

    now = now or datetime.now(timezone.utc)
    enriched_at = sound.enriched_at
    if enriched_at.tzinfo is None:
        enriched_at = enriched_at.replace(tzinfo=timezone.utc)
    return now - enriched_at < timedelta(hours=stale_hours)


class SoundEnricher:
    """Runs the metadata and full-page passes for one sound."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        browser: Optional[BrowserFetcher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or default_settings
        self._browser = browser
        self._transport = transport

    @property
    def browser(self) -> BrowserFetcher:
        if self._browser is None:
            self._browser = get_browser_fetcher()
        return self._browser

    async def fetch_metadata(self, url: str) -> MetadataPass:
        """Metadata pass: usage count from og:description."""
        try:
            async with httpx.AsyncClient(
                timeout=self.config.og_timeout,
                transport=self._transport,
                headers={"User-Agent": CRAWLER_USER_AGENT},
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"Metadata fetch failed for {url}: {e}")
            return (False, None, f"upstream unreachable: {e}")

        if response.status_code >= 400:
            return (False, None, f"upstream returned {response.status_code}")

        usage_count = parse_og_usage_count(response.text)
        if usage_count is None:
            return (False, None, "unrecognized page metadata")

        logger.info(f"Metadata usage count for {url}: {usage_count}")
        return (True, usage_count, None)

    async def fetch_page(self, url: str) -> PagePass:
        """Full-page pass: example videos and hashtags from the rehydration data."""
        try:
            success, html, error = await self.browser.fetch_html(url)
        except Exception as e:
            logger.warning(f"Full page fetch raised for {url}: {e}")
            return (False, None, str(e))

        if not success or not html:
            logger.info(f"Full page unavailable for {url}: {error}")
            return (False, None, error or "empty page")

        parsed = parse_music_detail(html)
        if not parsed.ok:
            # Usually an IP block page, which carries no music-detail scope
            logger.info(f"Full page for {url} has no usable data ({parsed.reason})")
            return (False, None, parsed.reason)

        return (True, parsed.data, None)

    async def enrich(self, sound_id: str, title: str) -> EnrichmentResult:
        """
        Enrich one sound. Raises EnrichmentError when the metadata pass fails.
        """
        url = sound_page_url(sound_id, title)
        logger.info(f"Enriching {url}")

        metadata, page = await asyncio.gather(self.fetch_metadata(url), self.fetch_page(url))
        result = merge_passes(metadata, page)

        logger.info(
            f"Enriched {sound_id}: usage={result.usage_count}, "
            f"videos={len(result.videos)}, hashtags={len(result.hashtags)}"
        )
        return result
