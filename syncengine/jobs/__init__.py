"""
Extraction jobs: state machine, sample runs, cancellation and job logs.
"""

from .cancellation import CancellationToken
from .job_logger import JobLogger
from .lifecycle import JobRunHooks, JobStateMachine
from .sample import SampleResult, run_sample

__all__ = [
    "CancellationToken",
    "JobLogger",
    "JobRunHooks",
    "JobStateMachine",
    "SampleResult",
    "run_sample",
]
