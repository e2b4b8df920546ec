"""
Row extraction: rules, transforms, pagination and the run loop.
"""

from syncengine.extraction.plan import ExtractionPlan, build_plan
from syncengine.extraction.runner import (
    FULL,
    SAMPLE,
    ExtractionOutcome,
    ExtractionRunner,
    RunHooks,
)

__all__ = [
    "FULL",
    "SAMPLE",
    "ExtractionOutcome",
    "ExtractionPlan",
    "ExtractionRunner",
    "RunHooks",
    "build_plan",
]
