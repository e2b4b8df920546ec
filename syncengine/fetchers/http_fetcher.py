"""
HTTP page fetcher - httpx with auth injection.

The fast, lightweight strategy. Serves static HTML only; one request per
call. Retries and pacing are handled by the PageFetcher facade.
"""

import logging
from typing import Optional

import httpx

from django.conf import settings

from syncengine.exceptions import FetchTimeout, HttpError, NetworkError
from syncengine.fetchers.config import AuthConfig
from syncengine.fetchers.result import PageResult

logger = logging.getLogger(__name__)


class HttpFetcher:
    """
    Fetcher using async httpx.

    Features:
    - Connection pooling across the pages of one run
    - Header, basic and cookie auth injection
    - Typed failures (timeout, network, HTTP status)
    """

    # Only gzip/deflate: httpx does not decode brotli without extra packages
    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    }

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the HTTP fetcher.

        Args:
            timeout: Request timeout in seconds (default from settings)
            user_agent: Custom User-Agent string
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.timeout = timeout or getattr(settings, "SYNCENGINE_REQUEST_TIMEOUT", 30)
        self.user_agent = user_agent or settings.SYNCENGINE_USER_AGENT
        self.transport = transport

        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self._init_http_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _init_http_client(self):
        if self._http_client is None:
            headers = {
                **self.DEFAULT_HEADERS,
                "User-Agent": self.user_agent,
            }
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                follow_redirects=True,
                transport=self.transport,
            )

    async def close(self):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, url: str, auth: Optional[AuthConfig] = None) -> PageResult:
        """
        Fetch a page once.

        Raises:
            FetchTimeout: request timed out
            NetworkError: connection-level failure
            HttpError: non-success status code
        """
        if self._http_client is None:
            await self._init_http_client()

        auth = auth or AuthConfig()

        try:
            response = await self._http_client.get(url, headers=auth.request_headers())
        except httpx.TimeoutException as e:
            logger.warning(f"HTTP timeout fetching {url}: {e}")
            raise FetchTimeout(f"Timeout: {e}", url=url)
        except httpx.TransportError as e:
            logger.warning(f"HTTP network error fetching {url}: {e}")
            raise NetworkError(f"{type(e).__name__}: {e}", url=url)

        if response.status_code >= 400:
            logger.warning(f"HTTP {response.status_code} for {url}")
            raise HttpError(response.status_code, url=url)

        return PageResult(
            html=response.text,
            final_url=str(response.url),
            status_code=response.status_code,
            strategy="http",
        )
