"""
Page fetcher facade.

Chooses the HTTP or browser strategy for a request, applies per-source
pacing, and retries retryable failures with exponential backoff:

    1. network errors, timeouts and 5xx responses are retried
    2. 4xx responses and render errors fail the page immediately
    3. after the last attempt the failure propagates to the runner

The hybrid decision (HTTP first, browser on escalation) belongs to the
extraction runner; here ``strategy`` is always explicit or derived from the
source's scraper type.
"""

import asyncio
import logging
from typing import Optional

from django.conf import settings

from syncengine.exceptions import ConfigurationError, FetchFailure
from syncengine.fetchers.browser_fetcher import BrowserFetcher
from syncengine.fetchers.config import ScraperConfig
from syncengine.fetchers.http_fetcher import HttpFetcher
from syncengine.fetchers.pacing import get_pacer
from syncengine.fetchers.result import PageResult
from syncengine.monitoring.sentry_integration import add_fetch_breadcrumb

logger = logging.getLogger(__name__)


class PageFetcher:
    """
    Fetch pages for one run.

    Usage:
        async with PageFetcher() as fetcher:
            page = await fetcher.fetch(url, scraper_config)
    """

    def __init__(
        self,
        http_fetcher: Optional[HttpFetcher] = None,
        browser_fetcher: Optional[BrowserFetcher] = None,
        max_attempts: Optional[int] = None,
        backoff_base: float = 1.0,
    ):
        self.http_fetcher = http_fetcher or HttpFetcher()
        self.browser_fetcher = browser_fetcher
        self.max_attempts = max(
            max_attempts or getattr(settings, "SYNCENGINE_FETCH_MAX_ATTEMPTS", 3), 1
        )
        self.backoff_base = backoff_base

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.http_fetcher.close()
        if self.browser_fetcher is not None:
            await self.browser_fetcher.close()

    def _browser(self) -> BrowserFetcher:
        if self.browser_fetcher is None:
            self.browser_fetcher = BrowserFetcher()
        return self.browser_fetcher

    @staticmethod
    def default_strategy(config: ScraperConfig) -> str:
        return "browser" if config.scraper_type == "browser" else "http"

    async def _fetch_once(
        self, url: str, config: ScraperConfig, strategy: str, scroll_count: int
    ) -> PageResult:
        if strategy == "browser":
            return await self._browser().fetch(url, auth=config.auth, scroll_count=scroll_count)
        return await self.http_fetcher.fetch(url, auth=config.auth)

    async def fetch(
        self,
        url: str,
        config: ScraperConfig,
        strategy: Optional[str] = None,
        scroll_count: int = 0,
    ) -> PageResult:
        """
        Fetch one page with pacing and bounded retries.

        Args:
            url: Absolute URL
            config: Fetch settings of the web source
            strategy: "http" or "browser"; defaults from config.scraper_type
            scroll_count: Scrolls before capture (browser only)

        Returns:
            PageResult

        Raises:
            FetchFailure subclass once retries are exhausted or the failure
            is permanent
        """
        strategy = strategy or self.default_strategy(config)
        if strategy not in ("http", "browser"):
            raise ConfigurationError(f"Unknown fetch strategy '{strategy}'")
        if strategy == "http" and config.scraper_type == "browser":
            raise ConfigurationError("Browser-only source cannot be fetched over HTTP")
        if scroll_count and strategy != "browser":
            raise ConfigurationError("Scrolling requires the browser strategy")

        pacer = get_pacer(config.source_key, config.request_delay_ms, config.max_concurrent)

        for attempt in range(self.max_attempts):
            try:
                async with pacer.slot():
                    result = await self._fetch_once(url, config, strategy, scroll_count)
                add_fetch_breadcrumb(url, strategy, result.status_code)
                return result

            except FetchFailure as e:
                add_fetch_breadcrumb(url, strategy, getattr(e, "status_code", 0), error=str(e))
                if not e.retryable or attempt == self.max_attempts - 1:
                    raise
                delay = self.backoff_base * (2 ** attempt)
                logger.warning(
                    f"{type(e).__name__} fetching {url} via {strategy} "
                    f"(attempt {attempt + 1}/{self.max_attempts}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        raise FetchFailure(f"Failed to fetch {url} after {self.max_attempts} attempts", url=url)
