"""
Monitoring for extraction jobs.

- Sentry breadcrumbs for fetches and job transitions
- Sentry capture of job failures with job context
- Structured job events (log record + Django signal)
"""

from .events import emit_job_event, job_event
from .sentry_integration import (
    add_fetch_breadcrumb,
    add_job_breadcrumb,
    capture_job_error,
    filter_sensitive_data,
)

__all__ = [
    "add_fetch_breadcrumb",
    "add_job_breadcrumb",
    "capture_job_error",
    "emit_job_event",
    "filter_sensitive_data",
    "job_event",
]
