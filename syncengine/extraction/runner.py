"""
Extraction runner.

Drives one run of a plan: walks the pages, fetches each one (escalating
hybrid sources to the browser when the escalation policy says so), turns
every repeating element into a row, and reports progress through hooks.

Modes:
- sample: stops after ``max_rows`` rows (default SYNCENGINE_SAMPLE_MAX_ROWS);
  rows are returned to the caller, never staged
- full: bounded only by the pagination max_pages; rows become the staged
  payload of the job

A row whose rules raise a FieldFailure is counted and left out. A page that
cannot be fetched is logged and skipped. A full run that ends with zero
rows raises NoDataExtracted.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup
from django.conf import settings

from syncengine.exceptions import FetchFailure, FieldFailure, NoDataExtracted
from syncengine.extraction.items import ItemLocator
from syncengine.extraction.llm_capture import CaptureClient, CaptureServiceError
from syncengine.extraction.pagination import PageInstruction, PaginationWalker
from syncengine.extraction.plan import ExtractionPlan
from syncengine.extraction.rules import evaluate_row
from syncengine.fetchers.escalation import EscalationPolicy, default_escalation_policy
from syncengine.fetchers.page_fetcher import PageFetcher
from syncengine.fetchers.result import PageResult

logger = logging.getLogger(__name__)

SAMPLE = "sample"
FULL = "full"

# Per-row failure details kept on the outcome; the rest are only counted
MAX_FAILURE_DETAILS = 100


class RunHooks:
    """
    Callbacks a caller passes to observe and steer a run.

    All hooks are coroutines; the defaults do nothing.
    """

    async def check_cancelled(self) -> None:
        """Raise JobCancelled to stop the run."""

    async def on_start(self, pages_total: Optional[int]) -> None:
        pass

    async def on_page(self, url: str, outcome: "ExtractionOutcome") -> None:
        pass

    async def log(
        self,
        level: str,
        message: str,
        url: str = "",
        row_index: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> None:
        pass


@dataclass
class ExtractionOutcome:
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    pages_processed: int = 0
    pages_failed: int = 0
    rows_extracted: int = 0
    rows_failed: int = 0
    escalations: int = 0
    failures: List[dict] = field(default_factory=list)
    first_failure: Optional[dict] = None
    page_errors: List[dict] = field(default_factory=list)
    stop_reason: Optional[str] = None

    def record_failure(self, detail: dict):
        self.rows_failed += 1
        if self.first_failure is None:
            self.first_failure = detail
        if len(self.failures) < MAX_FAILURE_DETAILS:
            self.failures.append(detail)

    def summary(self) -> dict:
        return {
            "pages_processed": self.pages_processed,
            "pages_failed": self.pages_failed,
            "rows_extracted": self.rows_extracted,
            "rows_failed": self.rows_failed,
            "escalations": self.escalations,
            "stop_reason": self.stop_reason,
        }


@dataclass
class _PageView:
    page: PageResult
    soup: BeautifulSoup
    items: List[Any]


class ExtractionRunner:
    """
    Runs extraction plans.

    Args:
        fetcher_factory: Callable returning an async-context PageFetcher
        escalation_policy: Hybrid escalation policy (default from settings)
        capture_client: Analyzer client for LLM plans
    """

    def __init__(
        self,
        fetcher_factory: Optional[Callable[[], PageFetcher]] = None,
        escalation_policy: Optional[EscalationPolicy] = None,
        capture_client: Optional[CaptureClient] = None,
    ):
        self.fetcher_factory = fetcher_factory or PageFetcher
        self.escalation_policy = escalation_policy or default_escalation_policy()
        self.capture_client = capture_client

    def _capture_client(self) -> CaptureClient:
        if self.capture_client is None:
            self.capture_client = CaptureClient()
        return self.capture_client

    async def run(
        self,
        plan: ExtractionPlan,
        mode: str = FULL,
        max_rows: Optional[int] = None,
        hooks: Optional[RunHooks] = None,
    ) -> ExtractionOutcome:
        """
        Execute a plan.

        Raises:
            JobCancelled: raised by hooks.check_cancelled
            NoDataExtracted: full mode produced no valid row
        """
        if mode not in (SAMPLE, FULL):
            raise ValueError(f"Unknown run mode '{mode}'")
        if mode == SAMPLE and not max_rows:
            max_rows = getattr(settings, "SYNCENGINE_SAMPLE_MAX_ROWS", 5)

        hooks = hooks or RunHooks()
        outcome = ExtractionOutcome(columns=plan.columns)
        walker = PaginationWalker(plan.start_url, plan.pagination)
        locator = ItemLocator.build(plan.rules, plan.item_selector) if plan.method == "rules" else None
        prefer_browser = plan.scraper.scraper_type == "browser"

        # Only generated page sequences know their length up front
        pages_total = None
        if plan.pagination.type == "none":
            pages_total = 1
        elif plan.pagination.type in ("query_param", "path"):
            pages_total = walker.max_pages
        await hooks.on_start(pages_total)

        logger.info(
            f"Starting {mode} run for assignment {plan.assignment_id} at {plan.start_url} "
            f"({plan.scraper.scraper_type}, pagination={plan.pagination.type})"
        )

        async with self.fetcher_factory() as fetcher:
            while True:
                await hooks.check_cancelled()
                instruction = walker.next_page()
                if instruction is None:
                    break

                try:
                    view, used_browser = await self._load_page(
                        fetcher, plan, instruction, locator, prefer_browser, outcome, hooks
                    )
                except (FetchFailure, CaptureServiceError) as e:
                    walker.record_failure()
                    outcome.pages_failed += 1
                    outcome.page_errors.append({"url": instruction.url, "error": str(e)})
                    logger.warning(f"Skipping page {instruction.url}: {e}")
                    await hooks.log("error", f"Page skipped: {e}", url=instruction.url)
                    continue

                # Once the browser yields items on a hybrid source, keep using it
                if used_browser and view.items:
                    prefer_browser = True

                outcome.pages_processed += 1
                walker.record(
                    len(view.items),
                    next_url=walker.discover_next_url(view.soup, view.page.final_url),
                )

                reached_cap = await self._build_rows(
                    plan, locator, view, instruction, outcome, hooks, max_rows
                )
                await hooks.on_page(view.page.final_url, outcome)

                if reached_cap:
                    outcome.stop_reason = "max_rows reached"
                    break

        if outcome.stop_reason is None:
            outcome.stop_reason = walker.stop_reason

        logger.info(
            f"Finished {mode} run for assignment {plan.assignment_id}: "
            f"{outcome.rows_extracted} rows, {outcome.rows_failed} failed, "
            f"{outcome.pages_processed} pages ({outcome.stop_reason})"
        )

        if mode == FULL and not outcome.rows:
            raise NoDataExtracted(
                f"No rows extracted from {outcome.pages_processed} pages "
                f"({outcome.rows_failed} rows failed, {outcome.pages_failed} pages failed)"
            )
        return outcome

    async def _parse(self, plan, page: PageResult, locator: Optional[ItemLocator]) -> _PageView:
        soup = BeautifulSoup(page.html, "lxml")
        if plan.method == "llm":
            records = await self._capture_client().extract(page.html, plan.capture, page.final_url)
            return _PageView(page=page, soup=soup, items=records)
        return _PageView(page=page, soup=soup, items=locator.locate(soup, page.final_url))

    async def _load_page(
        self,
        fetcher: PageFetcher,
        plan: ExtractionPlan,
        instruction: PageInstruction,
        locator: Optional[ItemLocator],
        prefer_browser: bool,
        outcome: ExtractionOutcome,
        hooks: RunHooks,
    ):
        use_browser = prefer_browser or instruction.scroll_count > 0
        strategy = "browser" if use_browser else "http"
        page = await fetcher.fetch(
            instruction.url, plan.scraper, strategy=strategy, scroll_count=instruction.scroll_count
        )
        view = await self._parse(plan, page, locator)

        if plan.scraper.scraper_type != "hybrid" or use_browser:
            return view, use_browser

        decision = self.escalation_policy.should_escalate(page, len(view.items))
        if not decision.should_escalate:
            return view, False

        logger.info(f"Escalating {instruction.url} to browser: {decision.reason}")
        await hooks.log(
            "info", f"Escalated to browser: {decision.reason}", url=instruction.url
        )
        outcome.escalations += 1
        page = await fetcher.fetch(instruction.url, plan.scraper, strategy="browser")
        return await self._parse(plan, page, locator), True

    async def _build_rows(
        self,
        plan: ExtractionPlan,
        locator: Optional[ItemLocator],
        view: _PageView,
        instruction: PageInstruction,
        outcome: ExtractionOutcome,
        hooks: RunHooks,
        max_rows: Optional[int],
    ) -> bool:
        """Turn the page's new items into rows. Returns True when max_rows is hit."""
        base_url = view.page.final_url

        for index, item in enumerate(view.items[instruction.skip_items:], start=instruction.skip_items):
            await hooks.check_cancelled()
            try:
                if plan.method == "llm":
                    row = plan.capture.map_record(item)
                else:
                    row = evaluate_row(item, locator.rules, base_url)
            except FieldFailure as e:
                detail = {"page_url": base_url, "row_index": index, **e.to_dict()}
                outcome.record_failure(detail)
                await hooks.log(
                    "warn", f"Row skipped: {e}", url=base_url, row_index=index, details=detail
                )
                continue

            outcome.rows.append(row)
            outcome.rows_extracted += 1
            if max_rows and len(outcome.rows) >= max_rows:
                return True
        return False
