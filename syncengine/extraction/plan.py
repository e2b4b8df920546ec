"""
Extraction plans.

A plan is the immutable, fully validated description of one run: where to
start, how to fetch, how to paginate and how to build rows. Building it
from the models is where configuration errors surface, before any job
state changes.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from syncengine.exceptions import ConfigurationError
from syncengine.extraction.llm_capture import CaptureConfig
from syncengine.extraction.pagination import PaginationConfig
from syncengine.extraction.rules import RuleSpec, load_rules, validate_selector
from syncengine.fetchers.config import ScraperConfig
from syncengine.secrets import resolve_auth_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionPlan:
    assignment_id: str
    start_url: str
    scraper: ScraperConfig
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    method: str = "rules"
    rules: List[RuleSpec] = field(default_factory=list)
    item_selector: Optional[str] = None
    capture: Optional[CaptureConfig] = None

    def __post_init__(self):
        if self.method not in ("rules", "llm"):
            raise ConfigurationError(f"Unknown extraction method '{self.method}'")
        if self.method == "rules" and not self.rules:
            raise ConfigurationError("Assignment has no active extraction rules")
        if self.method == "llm" and self.capture is None:
            raise ConfigurationError("LLM extraction requires a capture configuration")
        if self.pagination.type == "infinite_scroll" and self.scraper.scraper_type == "http":
            raise ConfigurationError("Infinite scroll requires a browser or hybrid source")
        if self.item_selector:
            validate_selector(self.item_selector, "css", "Item selector")

        seen = set()
        for column in self.columns:
            if column in seen:
                raise ConfigurationError(f"Column '{column}' has more than one active rule")
            seen.add(column)

    @property
    def columns(self) -> List[str]:
        if self.method == "llm" and self.capture is not None:
            return self.capture.columns
        return [rule.column for rule in self.rules]


def build_plan(assignment, auth_data: Optional[dict] = None) -> ExtractionPlan:
    """
    Build and validate the plan for an assignment.

    Args:
        assignment: Assignment with web_source loaded
        auth_data: Pre-resolved auth config; resolved through the secrets
            resolver when omitted

    Raises:
        ConfigurationError
    """
    web_source = assignment.web_source
    if auth_data is None:
        auth_data = resolve_auth_config(web_source)

    method = assignment.extraction_method
    capture = CaptureConfig.from_dict(assignment.llm_capture_config) if method == "llm" else None
    rules = load_rules(assignment.rules.all()) if method == "rules" else []

    return ExtractionPlan(
        assignment_id=str(assignment.pk),
        start_url=assignment.get_start_url(),
        scraper=ScraperConfig.from_web_source(web_source, auth_data),
        pagination=PaginationConfig.from_dict(
            web_source.pagination_type, web_source.pagination_config
        ),
        method=method,
        rules=rules,
        item_selector=assignment.item_selector or None,
        capture=capture,
    )
