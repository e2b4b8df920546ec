"""
Browser page fetcher - Playwright headless Chromium.

Used for browser and hybrid sources when the page needs JavaScript
rendering, and for infinite-scroll pagination. The browser is launched on
first use and shared by every page of one run.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from django.conf import settings

from syncengine.exceptions import FetchTimeout, HttpError, NetworkError, RenderError
from syncengine.fetchers.config import AuthConfig
from syncengine.fetchers.result import PageResult

logger = logging.getLogger(__name__)

SCROLL_SCRIPT = "window.scrollTo(0, document.body.scrollHeight)"


class BrowserFetcher:
    """
    Fetcher using a Playwright headless browser.

    Features:
    - Lazy Playwright initialization (import on first use)
    - Cookie, header and basic auth injection per browser context
    - Scrolling for lazily loaded listings
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        scroll_wait_ms: int = 1500,
    ):
        """
        Initialize the browser fetcher.

        Args:
            timeout: Page load timeout in seconds
            user_agent: Custom User-Agent string
            scroll_wait_ms: Pause after each scroll for new content to load
        """
        self.timeout = timeout or getattr(settings, "SYNCENGINE_REQUEST_TIMEOUT", 30)
        self.user_agent = user_agent or settings.SYNCENGINE_USER_AGENT
        self.scroll_wait_ms = scroll_wait_ms

        self._playwright = None
        self._browser = None

    async def __aenter__(self):
        await self._init_playwright()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _init_playwright(self):
        if self._browser is not None:
            return

        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-infobars",
                "--no-sandbox",
                "--disable-dev-shm-usage",
            ],
        )
        logger.info("Playwright browser initialized")

    async def close(self):
        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    def _context_options(self, auth: AuthConfig) -> dict:
        options = {
            "user_agent": self.user_agent,
            "viewport": {"width": 1920, "height": 1080},
        }
        if auth.type == "header":
            options["extra_http_headers"] = dict(auth.headers)
        elif auth.type == "basic":
            options["http_credentials"] = {
                "username": auth.username,
                "password": auth.password or "",
            }
        return options

    async def fetch(
        self,
        url: str,
        auth: Optional[AuthConfig] = None,
        scroll_count: int = 0,
    ) -> PageResult:
        """
        Render a page and return its DOM.

        Args:
            url: URL to render
            auth: Resolved auth configuration
            scroll_count: Times to scroll to the bottom before capturing

        Raises:
            FetchTimeout: navigation timed out
            NetworkError: the browser could not reach the host
            HttpError: non-success status code
            RenderError: any other browser failure
        """
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        if self._browser is None:
            await self._init_playwright()

        auth = auth or AuthConfig()
        context = await self._browser.new_context(**self._context_options(auth))

        try:
            cookies = auth.browser_cookies(urlparse(url).hostname or "")
            if cookies:
                await context.add_cookies(cookies)

            page = await context.new_page()
            try:
                response = await page.goto(
                    url,
                    wait_until="networkidle",
                    timeout=self.timeout * 1000,
                )
                status_code = response.status if response else 200
                if status_code >= 400:
                    raise HttpError(status_code, url=url)

                for _ in range(scroll_count):
                    await page.evaluate(SCROLL_SCRIPT)
                    await page.wait_for_timeout(self.scroll_wait_ms)

                await page.wait_for_load_state("domcontentloaded")
                html = await page.content()

                return PageResult(
                    html=html,
                    final_url=page.url,
                    status_code=status_code,
                    strategy="browser",
                )

            except PlaywrightTimeoutError as e:
                logger.warning(f"Browser timeout for {url}: {e}")
                raise FetchTimeout(f"Timeout: {e}", url=url)

            except PlaywrightError as e:
                message = str(e)
                logger.error(f"Browser error for {url}: {message}")
                if "net::ERR_" in message:
                    raise NetworkError(message, url=url)
                raise RenderError(message, url=url)

            finally:
                await page.close()

        finally:
            await context.close()
