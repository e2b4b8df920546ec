"""
Pagination walker.

Produces the sequence of pages one run visits. The walker is a small state
machine: the runner asks for the next page, fetches and parses it, then
feeds back how many repeating elements it found and, for next-button
pagination, the continuation link discovered on it.

A run always starts again from the first page; there is no mid-sequence
resume.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Set
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from django.conf import settings

from syncengine.exceptions import ConfigurationError
from syncengine.extraction.rules import validate_selector

logger = logging.getLogger(__name__)

PAGINATION_TYPES = ("none", "query_param", "path", "next_button", "infinite_scroll")

_PATH_PAGE_RE = re.compile(r"/(page|p)/\d+")


@dataclass(frozen=True)
class PaginationConfig:
    type: str = "none"
    param_name: str = "page"
    selector: Optional[str] = None
    url_pattern: Optional[str] = None
    max_pages: Optional[int] = None
    start_page: int = 1
    min_pages: Optional[int] = None

    @classmethod
    def from_dict(cls, pagination_type: Optional[str], data: Optional[dict] = None):
        """
        Build from a stored pagination type and config dict.

        Accepts both snake_case and camelCase keys.
        """
        data = data or {}

        def pick(*keys, default=None):
            for key in keys:
                if data.get(key) not in (None, ""):
                    return data[key]
            return default

        kind = pagination_type or pick("type", default="none")
        if kind not in PAGINATION_TYPES:
            raise ConfigurationError(f"Unknown pagination type '{kind}'")

        try:
            max_pages = pick("max_pages", "maxPages")
            max_pages = int(max_pages) if max_pages is not None else None
            start_page = int(pick("start_page", "startPage", default=1))
            min_pages = pick("min_pages", "minPages")
            min_pages = int(min_pages) if min_pages is not None else None
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid pagination number: {e}")

        config = cls(
            type=kind,
            param_name=pick("param_name", "paramName", default="page"),
            selector=pick("selector"),
            url_pattern=pick("url_pattern", "urlPattern"),
            max_pages=max_pages,
            start_page=start_page,
            min_pages=min_pages,
        )
        config.validate()
        return config

    def validate(self):
        if self.max_pages is not None and self.max_pages < 1:
            raise ConfigurationError("Pagination max_pages must be at least 1")
        if self.type == "next_button" and not self.selector:
            raise ConfigurationError("Next-button pagination requires a selector")
        if self.selector:
            validate_selector(self.selector, "css", "Pagination")
        if self.url_pattern and "{page}" not in self.url_pattern:
            raise ConfigurationError("Pagination url_pattern must contain '{page}'")

    @property
    def effective_max_pages(self) -> int:
        if self.type == "none":
            return 1
        return self.max_pages or getattr(settings, "SYNCENGINE_DEFAULT_MAX_PAGES", 100)

    @property
    def effective_min_pages(self) -> int:
        if self.min_pages is not None:
            return self.min_pages
        return getattr(settings, "SYNCENGINE_MIN_PAGES", 1)


@dataclass(frozen=True)
class PageInstruction:
    """One page to fetch."""

    url: str
    page_number: int
    scroll_count: int = 0
    # Items already processed on earlier renders of the same page
    skip_items: int = 0


def set_query_param(url: str, name: str, value) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != name]
    query.append((name, str(value)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def build_path_url(start_url: str, page: int, url_pattern: Optional[str] = None) -> str:
    if url_pattern:
        return urljoin(start_url, url_pattern.replace("{page}", str(page)))

    parts = urlsplit(start_url)
    if _PATH_PAGE_RE.search(parts.path):
        path = _PATH_PAGE_RE.sub(lambda m: f"/{m.group(1)}/{page}", parts.path, count=1)
    else:
        path = f"{parts.path.rstrip('/')}/page/{page}"
    return urlunsplit(parts._replace(path=path))


class PaginationWalker:
    """
    Walks the pages of one run.

    Usage:
        walker = PaginationWalker(start_url, config)
        while (instruction := walker.next_page()) is not None:
            ...fetch and parse...
            walker.record(item_count, next_url=...)
    """

    def __init__(self, start_url: str, config: Optional[PaginationConfig] = None):
        self.start_url = start_url
        self.config = config or PaginationConfig()
        self.max_pages = self.config.effective_max_pages
        self.min_pages = self.config.effective_min_pages

        self.pages_issued = 0
        self.finished = False
        self.stop_reason: Optional[str] = None

        self._next_url: Optional[str] = start_url
        self._visited: Set[str] = set()
        self._last_item_count = 0
        self._pending: Optional[PageInstruction] = None

    def _stop(self, reason: str):
        if not self.finished:
            self.finished = True
            self.stop_reason = reason
            logger.debug(f"Pagination stopped after {self.pages_issued} pages: {reason}")

    def _page_url(self, page_number: int) -> str:
        kind = self.config.type
        page = self.config.start_page + page_number - 1

        if kind == "query_param":
            return set_query_param(self.start_url, self.config.param_name, page)
        if kind == "path":
            if page_number == 1 and not self.config.url_pattern:
                return self.start_url
            return build_path_url(self.start_url, page, self.config.url_pattern)
        return self.start_url

    def next_page(self) -> Optional[PageInstruction]:
        """Return the next page to visit, or None when the walk is over."""
        if self._pending is not None:
            raise RuntimeError("record() must be called for the previous page first")
        if self.finished:
            return None
        if self.pages_issued >= self.max_pages:
            self._stop("max_pages reached")
            return None

        page_number = self.pages_issued + 1
        kind = self.config.type

        if kind == "next_button":
            url = self._next_url
            if url is None:
                self._stop("no next link")
                return None
            self._visited.add(url)
            instruction = PageInstruction(url=url, page_number=page_number)
        elif kind == "infinite_scroll":
            instruction = PageInstruction(
                url=self.start_url,
                page_number=page_number,
                scroll_count=page_number - 1,
                skip_items=self._last_item_count,
            )
        else:
            instruction = PageInstruction(url=self._page_url(page_number), page_number=page_number)

        self.pages_issued += 1
        self._pending = instruction
        return instruction

    def record(self, item_count: int, next_url: Optional[str] = None):
        """
        Feed back the result of the page just visited.

        Args:
            item_count: Repeating elements found on the page. For infinite
                scroll this is the total on the rendered page, not new items.
            next_url: Absolute continuation link (next-button pagination)
        """
        if self._pending is None:
            raise RuntimeError("record() called without a pending page")
        self._pending = None
        kind = self.config.type

        if kind == "none":
            self._stop("single page")
        elif kind in ("query_param", "path"):
            if item_count == 0 and self.pages_issued >= self.min_pages:
                self._stop("empty page")
        elif kind == "next_button":
            if not next_url:
                self._next_url = None
                self._stop("no next link")
            elif next_url in self._visited:
                self._next_url = None
                self._stop(f"next link revisits {next_url}")
            else:
                self._next_url = next_url
        elif kind == "infinite_scroll":
            if self.pages_issued > 1 and item_count <= self._last_item_count:
                self._stop("item count stopped growing")
            self._last_item_count = max(item_count, self._last_item_count)

    def record_failure(self):
        """The pending page could not be fetched; it is skipped."""
        if self._pending is None:
            raise RuntimeError("record_failure() called without a pending page")
        self._pending = None
        if self.config.type in ("none", "next_button", "infinite_scroll"):
            self._stop("page fetch failed")

    def discover_next_url(self, soup: BeautifulSoup, page_url: str) -> Optional[str]:
        """Find the continuation link on a parsed page (next-button pagination)."""
        if self.config.type != "next_button" or not self.config.selector:
            return None

        node = soup.select_one(self.config.selector)
        if node is None:
            return None
        if node.name != "a" or not node.get("href"):
            node = node.find("a", href=True) if node.name != "a" else None
        if node is None:
            return None

        href = node.get("href", "").strip()
        if not href or href.startswith("#") or href.lower().startswith("javascript:"):
            return None
        return urljoin(page_url, href)
