"""
Sample runs.

A sample is a bounded exploratory run used while authoring rules: it
creates no job, takes no lease and writes nothing to staging. The rows go
straight back to the caller together with the first row failure in full.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from asgiref.sync import async_to_sync
from django.conf import settings

from syncengine.extraction.plan import build_plan
from syncengine.extraction.runner import SAMPLE, ExtractionRunner
from syncengine.models import Assignment

logger = logging.getLogger(__name__)


@dataclass
class SampleResult:
    rows: List[Dict[str, Any]]
    columns: List[str]
    source_url: str
    pages_processed: int = 0
    rows_failed: int = 0
    first_failure: Optional[dict] = None
    page_errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def run_sample(
    assignment_id,
    max_rows: Optional[int] = None,
    runner: Optional[ExtractionRunner] = None,
) -> SampleResult:
    """
    Run an assignment in sample mode.

    Raises:
        ConfigurationError: the assignment cannot run as configured
    """
    assignment = Assignment.objects.select_related("web_source").get(pk=assignment_id)
    plan = build_plan(assignment)
    max_rows = max_rows or getattr(settings, "SYNCENGINE_SAMPLE_MAX_ROWS", 5)

    runner = runner or ExtractionRunner()
    outcome = async_to_sync(runner.run)(plan, mode=SAMPLE, max_rows=max_rows)

    logger.info(
        f"Sample run for assignment {assignment_id}: {len(outcome.rows)} rows, "
        f"{outcome.rows_failed} failed"
    )
    return SampleResult(
        rows=outcome.rows,
        columns=outcome.columns,
        source_url=plan.start_url,
        pages_processed=outcome.pages_processed,
        rows_failed=outcome.rows_failed,
        first_failure=outcome.first_failure,
        page_errors=outcome.page_errors,
    )
