"""TikTok oEmbed lookups, batched to stay under upstream rate limits."""

import asyncio
import logging
from typing import Dict, List, Optional

import httpx

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.tiktok.com/oembed"


async def fetch_oembed(
    client: httpx.AsyncClient,
    video_url: str,
    max_retries: int = 2,
    retry_delay: float = 1.0,
) -> Optional[str]:
    """
    Fetch the embed HTML for one video.

    Retries on HTTP 429 and transport errors with a linear backoff
    (retry_delay * attempt). Any other failure returns None.
    """
    for attempt in range(max_retries + 1):
        try:
            response = await client.get(OEMBED_URL, params={"url": video_url})
        except httpx.TransportError as e:
            if attempt < max_retries:
                logger.debug(f"oEmbed transport error for {video_url} (attempt {attempt + 1}): {e}")
                await asyncio.sleep(retry_delay * (attempt + 1))
                continue
            logger.warning(f"oEmbed gave up on {video_url}: {e}")
            return None

        if response.status_code == 429 and attempt < max_retries:
            logger.debug(f"oEmbed rate limited for {video_url}, retrying")
            await asyncio.sleep(retry_delay * (attempt + 1))
            continue

        if response.status_code >= 400:
            logger.debug(f"oEmbed error {response.status_code} for {video_url}")
            return None

        try:
            return response.json().get("html") or None
        except (ValueError, AttributeError):
            return None

    return None


async def fetch_oembed_batch(
    video_urls: List[str],
    config: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    retry_delay: float = 1.0,
) -> Dict[str, str]:
    """
    Resolve embed HTML for many videos, a few at a time.

    URLs without embed HTML are simply absent from the returned map.
    """
    config = config or default_settings
    results: Dict[str, str] = {}
    if not video_urls:
        return results

    batch_size = max(1, config.oembed_batch_size)

    async with httpx.AsyncClient(timeout=config.oembed_timeout, transport=transport) as client:
        for start in range(0, len(video_urls), batch_size):
            batch = video_urls[start:start + batch_size]
            htmls = await asyncio.gather(
                *(fetch_oembed(client, url, config.oembed_max_retries, retry_delay) for url in batch)
            )
            for url, html in zip(batch, htmls):
                if html:
                    results[url] = html

            if start + batch_size < len(video_urls):
                await asyncio.sleep(config.oembed_batch_pause)

    logger.info(f"oEmbed resolved {len(results)}/{len(video_urls)} videos")
    return results
