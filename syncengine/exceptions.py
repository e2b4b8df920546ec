"""
Error taxonomy for the extraction engine.

Fetch failures carry a ``retryable`` flag consumed by the page fetcher's
retry loop. Field failures are per-row and never abort a job on their own.
"""

from typing import Any, Optional


class SyncEngineError(Exception):
    """Base class for all extraction engine errors."""


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------


class ConfigurationError(SyncEngineError):
    """Assignment, rule or source configuration is invalid."""


class TransformConfigError(ConfigurationError):
    """A rule's transform configuration cannot be loaded."""


class InvalidSchedule(ConfigurationError):
    """Schedule type or cron expression cannot be evaluated."""


# ------------------------------------------------------------------
# Fetching
# ------------------------------------------------------------------


class FetchFailure(SyncEngineError):
    """A page could not be fetched."""

    retryable = False

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NetworkError(FetchFailure):
    """Connection refused, DNS failure, reset."""

    retryable = True


class HttpError(FetchFailure):
    """Non-success HTTP status. 4xx is permanent, 5xx is retryable."""

    def __init__(self, status_code: int, url: Optional[str] = None):
        super().__init__(f"HTTP {status_code}", url=url)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class FetchTimeout(FetchFailure):
    """The page did not load within the configured timeout."""

    retryable = True


class RenderError(FetchFailure):
    """The browser could not render the page."""


# ------------------------------------------------------------------
# Field evaluation
# ------------------------------------------------------------------


class FieldFailure(SyncEngineError):
    """A single rule failed for a single item."""

    def __init__(self, column: str, message: str, value: Any = None):
        super().__init__(f"{column}: {message}")
        self.column = column
        self.detail = message
        self.value = value

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "column": self.column,
            "message": self.detail,
            "value": None if self.value is None else str(self.value)[:200],
        }


class MissingRequired(FieldFailure):
    pass


class ValidationFailure(FieldFailure):
    pass


class TransformFailure(FieldFailure):
    pass


class TypeCoercionFailure(FieldFailure):
    pass


# ------------------------------------------------------------------
# Jobs
# ------------------------------------------------------------------


class NoDataExtracted(SyncEngineError):
    """A full run finished without a single valid row."""


class AlreadyRunning(SyncEngineError):
    """The assignment already has a job in flight."""

    def __init__(self, assignment_id, job_id=None):
        super().__init__(f"Assignment {assignment_id} already has job {job_id} in flight")
        self.assignment_id = assignment_id
        self.job_id = job_id


class CommitFailure(SyncEngineError):
    """Writing staged rows to the target table failed as a whole."""


class JobCancelled(SyncEngineError):
    """Raised inside a run when the operator has cancelled the job."""


class InvalidJobState(SyncEngineError):
    """The requested transition is not allowed from the job's current state."""

    def __init__(self, job_id, current: str, action: str):
        super().__init__(f"Cannot {action} job {job_id} in status '{current}'")
        self.job_id = job_id
        self.current = current
        self.action = action


class StagedDataNotFound(SyncEngineError):
    """The job has no staged payload, or it was discarded."""


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


class InvalidStatusTransition(SyncEngineError):
    """Assignment status change not allowed."""


class AssignmentBusy(SyncEngineError):
    """The assignment cannot be deleted while a job holds its lease."""


class ImmutableRecordError(SyncEngineError):
    """Process log entries are append-only."""
