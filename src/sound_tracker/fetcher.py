"""Full-page fetcher using a Playwright headless browser.

TikTok only renders the rehydration data for requests that look like a real
browser, so the full-page enrichment pass loads sound pages through Chromium.
"""

import asyncio
import logging
from typing import Optional, Tuple
from playwright.async_api import async_playwright, Browser, Playwright

from .config import settings
from .sources import BROWSER_USER_AGENT

logger = logging.getLogger(__name__)


class BrowserFetcher:
    """Loads pages in a shared headless browser."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.page_timeout
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the browser instance (reusable)."""
        async with self._init_lock:
            if self._initialized:
                return

            logger.info("Initializing Playwright browser...")
            self._playwright = await async_playwright().start()

            self._browser = await self._playwright.chromium.launch(
                headless=True,
                args=[
                    "--disable-gpu",
                    "--disable-dev-shm-usage",
                    "--disable-setuid-sandbox",
                    "--no-sandbox",
                ]
            )

            self._initialized = True
            logger.info("Browser initialized successfully")

    async def close(self) -> None:
        """Close browser and cleanup."""
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self._initialized = False
        logger.info("Browser closed")

    async def fetch_html(self, url: str) -> Tuple[bool, Optional[str], Optional[str]]:
        """
        Load a page and return its HTML.

        Returns:
            Tuple of (success, html, error_message)
        """
        page = None
        try:
            if not self._initialized:
                await self.initialize()

            page = await self._browser.new_page(
                user_agent=BROWSER_USER_AGENT,
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )

            # Block heavy resources, only the HTML is needed
            await page.route("**/*.{png,jpg,jpeg,gif,svg,ico,woff,woff2,mp4,webp}", lambda route: route.abort())

            response = await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout * 1000)
            if response is not None and not response.ok:
                return (False, None, f"HTTP {response.status}")

            html = await page.content()
            return (True, html, None)

        except Exception as e:
            logger.warning(f"Browser fetch failed for {url}: {e}")
            return (False, None, str(e))

        finally:
            if page:
                await page.close()


# Global browser instance for reuse
_browser_fetcher: Optional[BrowserFetcher] = None


def get_browser_fetcher() -> BrowserFetcher:
    """Get or create the global browser fetcher instance (initialized on first use)."""
    global _browser_fetcher
    if _browser_fetcher is None:
        _browser_fetcher = BrowserFetcher()
    return _browser_fetcher


async def close_browser_fetcher() -> None:
    """Close the global browser fetcher."""
    global _browser_fetcher
    if _browser_fetcher:
        await _browser_fetcher.close()
        _browser_fetcher = None
