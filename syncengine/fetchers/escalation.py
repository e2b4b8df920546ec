"""
Hybrid escalation policies.

A hybrid source is fetched over plain HTTP first. After the runner has
parsed the page it asks the policy whether the page should be rendered in
the browser instead.

The default signal is the minimal one: the item selector matched nothing.
ContentHeuristicEscalationPolicy additionally flags JavaScript shells and
loading pages, which catches sites that render a few static items before
hydrating the rest.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from syncengine.fetchers.result import PageResult

logger = logging.getLogger(__name__)


@dataclass
class EscalationResult:
    """Result of an escalation check."""

    should_escalate: bool
    reason: Optional[str] = None


class EscalationPolicy:
    """Decides whether an HTTP-fetched page should be re-rendered in the browser."""

    def should_escalate(self, result: PageResult, item_count: int) -> EscalationResult:
        raise NotImplementedError


class ZeroMatchEscalationPolicy(EscalationPolicy):
    """Escalate when the page yields no repeating elements."""

    def should_escalate(self, result: PageResult, item_count: int) -> EscalationResult:
        if item_count == 0:
            return EscalationResult(True, "no repeating elements matched")
        return EscalationResult(False)


class ContentHeuristicEscalationPolicy(ZeroMatchEscalationPolicy):
    """Zero matches, or the HTML looks like an unrendered JavaScript app."""

    SPA_PATTERNS = [
        '<div id="root"></div>',
        '<div id="__next"></div>',
        '<div id="app"></div>',
        "<app-root></app-root>",
    ]

    NOSCRIPT_PATTERNS = [
        "you need to enable javascript",
        "please enable javascript",
        "javascript is required",
        "this app requires javascript",
    ]

    LOADING_PATTERNS = [
        "loading...",
        "please wait",
        "loading-spinner",
        "loading-indicator",
    ]

    def should_escalate(self, result: PageResult, item_count: int) -> EscalationResult:
        base = super().should_escalate(result, item_count)
        if base.should_escalate:
            return base

        if self.is_javascript_placeholder(result.html):
            return EscalationResult(True, "JavaScript placeholder page")
        if self.is_loading(result.html):
            return EscalationResult(True, "loading page")
        return EscalationResult(False)

    @classmethod
    def is_javascript_placeholder(cls, content: str) -> bool:
        content_lower = content.lower()

        for pattern in cls.SPA_PATTERNS:
            index = content_lower.find(pattern)
            if index != -1:
                after = content[index + len(pattern):]
                stripped = re.sub(r"<[^>]+>", "", after).strip()
                if len(stripped) < 100:
                    return True

        return any(pattern in content_lower for pattern in cls.NOSCRIPT_PATTERNS)

    @classmethod
    def is_loading(cls, content: str) -> bool:
        text_content = re.sub(r"<[^>]+>", "", content)
        text_content = re.sub(r"\s+", " ", text_content).strip()
        content_lower = content.lower()

        for pattern in cls.LOADING_PATTERNS:
            if pattern in content_lower and len(text_content) < 200:
                return True
        return False


def default_escalation_policy() -> EscalationPolicy:
    if getattr(settings, "SYNCENGINE_HYBRID_CONTENT_HEURISTICS", False):
        return ContentHeuristicEscalationPolicy()
    return ZeroMatchEscalationPolicy()
