"""
Sentry error tracking for extraction runs.

- Breadcrumbs for every page fetch (URL, strategy, status)
- Job failures captured with assignment/job context
- Auth material filtered out of anything sent

Usage:
    from syncengine.monitoring import capture_job_error

    try:
        machine.execute(job_id)
    except Exception as e:
        capture_job_error(e, job=job)
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = {
    "cookies",
    "cookie",
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "auth",
    "password",
    "secret",
    "token",
    "x-api-key",
}


def filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values of sensitive keys, recursively."""
    if not isinstance(data, dict):
        return data

    filtered = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            filtered[key] = "[Filtered]"
        elif isinstance(value, dict):
            filtered[key] = filter_sensitive_data(value)
        else:
            filtered[key] = value
    return filtered


def add_fetch_breadcrumb(
    url: str,
    strategy: str,
    status_code: int,
    error: Optional[str] = None,
) -> None:
    """Record a page fetch so a later job error shows the request trail."""
    sentry_sdk.add_breadcrumb(
        category="fetch",
        message=f"{strategy.upper()} {url}",
        level="error" if error else "info",
        data={
            "url": url,
            "strategy": strategy,
            "status_code": status_code,
            "error": error,
        },
    )


def add_job_breadcrumb(job_id, event: str, data: Optional[Dict[str, Any]] = None) -> None:
    sentry_sdk.add_breadcrumb(
        category="job",
        message=f"Job {job_id}: {event}",
        level="info",
        data=filter_sensitive_data(data or {}),
    )


def capture_job_error(
    error: Exception,
    job=None,
    url: Optional[str] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """Capture a job-level failure to Sentry with job and assignment tags."""
    with sentry_sdk.new_scope() as scope:
        if job is not None:
            scope.set_tag("syncengine.job", str(job.id))
            scope.set_tag("syncengine.assignment", str(job.assignment_id))
            scope.set_tag("syncengine.trigger", job.trigger_source)
        if url:
            scope.set_extra("page_url", url)
        if extra_context:
            scope.set_extra("job_context", filter_sensitive_data(extra_context))
        sentry_sdk.capture_exception(error)

    logger.debug(f"Captured {type(error).__name__} to Sentry")
