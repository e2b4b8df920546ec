"""
Page fetching for extraction runs.

Strategies:
- http: httpx, static HTML
- browser: Playwright, rendered DOM
- hybrid: http first, browser when the runner's escalation policy says so
"""

from syncengine.fetchers.browser_fetcher import BrowserFetcher
from syncengine.fetchers.config import AuthConfig, ScraperConfig
from syncengine.fetchers.escalation import (
    ContentHeuristicEscalationPolicy,
    EscalationPolicy,
    EscalationResult,
    ZeroMatchEscalationPolicy,
    default_escalation_policy,
)
from syncengine.fetchers.http_fetcher import HttpFetcher
from syncengine.fetchers.page_fetcher import PageFetcher
from syncengine.fetchers.result import PageResult

__all__ = [
    "AuthConfig",
    "BrowserFetcher",
    "ContentHeuristicEscalationPolicy",
    "EscalationPolicy",
    "EscalationResult",
    "HttpFetcher",
    "PageFetcher",
    "PageResult",
    "ScraperConfig",
    "ZeroMatchEscalationPolicy",
    "default_escalation_policy",
]
