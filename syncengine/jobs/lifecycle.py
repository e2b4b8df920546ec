"""
Extraction job state machine.

    pending -> running -> staging -> completed
        \\         \\          \\
         +---------+----------+--> cancelled | failed

- create_job takes the assignment lease; a second in-flight job for the
  same assignment raises AlreadyRunning
- every transition is a conditional UPDATE on the current status, so a
  concurrent cancel and a finishing run cannot both win
- commit is only valid from staging and is claimed once via committed_at
- cancel and fail discard the staged payload and release the lease
- every transition emits one job event
"""

import logging
from typing import Optional

from asgiref.sync import async_to_sync, sync_to_async
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from syncengine.connectors import get_connector
from syncengine.exceptions import (
    AlreadyRunning,
    CommitFailure,
    ConfigurationError,
    InvalidJobState,
    JobCancelled,
    NoDataExtracted,
    StagedDataNotFound,
)
from syncengine.extraction.plan import build_plan
from syncengine.extraction.runner import FULL, ExtractionOutcome, ExtractionRunner, RunHooks
from syncengine.jobs.cancellation import CancellationToken
from syncengine.jobs.job_logger import JobLogger
from syncengine.models import (
    Assignment,
    AssignmentLease,
    AssignmentStatus,
    ExtractionJob,
    ExtractionJobStatus,
    SyncMode,
    TriggerSource,
)
from syncengine.monitoring import capture_job_error, emit_job_event
from syncengine.monitoring import events
from syncengine.staging import CLEARED_STAGING_FIELDS, StagingStore

logger = logging.getLogger(__name__)

RUNNABLE_ASSIGNMENT_STATUSES = (
    AssignmentStatus.DRAFT,
    AssignmentStatus.TESTING,
    AssignmentStatus.ACTIVE,
)

IN_FLIGHT_STATUSES = (
    ExtractionJobStatus.PENDING,
    ExtractionJobStatus.RUNNING,
    ExtractionJobStatus.STAGING,
)


class JobRunHooks(RunHooks):
    """Bridges runner callbacks to the job row, its process log and cancellation."""

    def __init__(self, job_id, job_logger: JobLogger, token: CancellationToken):
        self.job_id = job_id
        self.job_logger = job_logger
        self.token = token

    async def check_cancelled(self) -> None:
        await sync_to_async(self.token.check)()

    async def on_start(self, pages_total: Optional[int]) -> None:
        await sync_to_async(self._update)(pages_total=pages_total)

    async def on_page(self, url: str, outcome: ExtractionOutcome) -> None:
        await sync_to_async(self._update)(
            current_url=url[:2000],
            pages_processed=outcome.pages_processed,
            rows_extracted=outcome.rows_extracted,
            rows_failed=outcome.rows_failed,
        )

    async def log(self, level, message, url="", row_index=None, details=None) -> None:
        await sync_to_async(self.job_logger.log)(
            level, message, url=url, row_index=row_index, details=details
        )

    def _update(self, **fields):
        ExtractionJob.objects.filter(
            pk=self.job_id, status=ExtractionJobStatus.RUNNING
        ).update(**fields)


class JobStateMachine:
    """
    Owns every job status change.

    Usage:
        machine = JobStateMachine()
        job = machine.create_job(assignment_id, TriggerSource.MANUAL)
        machine.execute(job.id)          # usually from a Celery task
        machine.commit(job.id)           # manual sync mode
    """

    def __init__(
        self,
        runner: Optional[ExtractionRunner] = None,
        staging: Optional[StagingStore] = None,
        connector_factory=None,
    ):
        self.runner = runner
        self.staging = staging or StagingStore()
        self.connector_factory = connector_factory or get_connector

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, job_id, from_statuses, **fields) -> bool:
        updated = ExtractionJob.objects.filter(
            pk=job_id, status__in=list(from_statuses)
        ).update(**fields)
        return updated == 1

    def _release_lease(self, job: ExtractionJob):
        AssignmentLease.objects.filter(assignment_id=job.assignment_id, job_id=job.id).delete()

    def _discard_staging(self, job: ExtractionJob):
        self.staging.discard(job)
        ExtractionJob.objects.filter(pk=job.id).update(**CLEARED_STAGING_FIELDS)

    def _get(self, job_id) -> ExtractionJob:
        return ExtractionJob.objects.select_related("assignment").get(pk=job_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_job(
        self,
        assignment_id,
        trigger_source: str = TriggerSource.MANUAL,
        sync_mode: Optional[str] = None,
    ) -> ExtractionJob:
        """
        Create a pending job holding the assignment lease.

        Raises:
            ConfigurationError: the assignment cannot run as configured
            AlreadyRunning: another job of the assignment is in flight
        """
        assignment = Assignment.objects.select_related("web_source", "data_source").get(
            pk=assignment_id
        )
        if assignment.status not in RUNNABLE_ASSIGNMENT_STATUSES:
            raise ConfigurationError(
                f"Assignment '{assignment.name}' is {assignment.status} and cannot run"
            )
        build_plan(assignment)

        try:
            with transaction.atomic():
                job = ExtractionJob.objects.create(
                    assignment=assignment,
                    trigger_source=trigger_source,
                    sync_mode=sync_mode or assignment.sync_mode,
                )
                AssignmentLease.objects.create(assignment=assignment, job=job)
        except IntegrityError:
            lease = AssignmentLease.objects.filter(assignment_id=assignment.pk).first()
            raise AlreadyRunning(assignment.pk, lease.job_id if lease else None)

        emit_job_event(job, events.JOB_CREATED, trigger_source=trigger_source)
        return job

    def start(self, job_id) -> ExtractionJob:
        """pending -> running."""
        if not self._transition(
            job_id,
            [ExtractionJobStatus.PENDING],
            status=ExtractionJobStatus.RUNNING,
            started_at=timezone.now(),
        ):
            job = self._get(job_id)
            if job.status == ExtractionJobStatus.CANCELLED:
                raise JobCancelled(f"Job {job_id} was cancelled before it started")
            raise InvalidJobState(job_id, job.status, "start")

        job = self._get(job_id)
        emit_job_event(job, events.JOB_STARTED)
        return job

    def stage(self, job_id, outcome: ExtractionOutcome) -> ExtractionJob:
        """
        running -> staging, persisting the extracted rows.

        In auto sync mode the job is committed right away.
        """
        job = self._get(job_id)
        payload = self.staging.write(job.id, outcome.rows, outcome.columns)

        staged = self._transition(
            job_id,
            [ExtractionJobStatus.RUNNING],
            status=ExtractionJobStatus.STAGING,
            pages_processed=outcome.pages_processed,
            rows_extracted=outcome.rows_extracted,
            rows_failed=outcome.rows_failed,
            error_details={
                "summary": outcome.summary(),
                "first_failure": outcome.first_failure,
                "page_errors": outcome.page_errors[:20],
            },
            **payload.job_fields(),
        )
        if not staged:
            # Cancelled while the payload was being written
            self.staging.discard(ExtractionJob(id=job.id, staged_data_path=payload.path))
            job.refresh_from_db()
            if job.status == ExtractionJobStatus.CANCELLED:
                raise JobCancelled(f"Job {job_id} was cancelled before staging")
            raise InvalidJobState(job_id, job.status, "stage")

        job = self._get(job_id)
        emit_job_event(job, events.JOB_STAGED, rows=payload.row_count)

        if job.sync_mode == SyncMode.AUTO:
            return self.commit(job_id)
        return job

    def commit(self, job_id) -> ExtractionJob:
        """
        staging -> completed, inserting staged rows into the target table.

        Raises:
            InvalidJobState: the job is not staging or is already being committed
            CommitFailure: the commit could not complete (job is failed)
        """
        claimed = ExtractionJob.objects.filter(
            pk=job_id, status=ExtractionJobStatus.STAGING, committed_at__isnull=True
        ).update(committed_at=timezone.now())
        if not claimed:
            job = self._get(job_id)
            raise InvalidJobState(job_id, job.status, "commit")

        job = ExtractionJob.objects.select_related("assignment__data_source").get(pk=job_id)
        assignment = job.assignment

        try:
            rows = self.staging.read(job)
            connector = self.connector_factory(assignment.data_source)
            result = connector.insert_rows(
                assignment.target_schema,
                assignment.target_table,
                job.staged_columns,
                rows,
            )
        except (StagedDataNotFound, CommitFailure, ConfigurationError) as e:
            self.fail(job_id, f"Commit failed: {e}", allow_committing=True)
            raise CommitFailure(str(e)) from e
        except Exception as e:
            logger.exception(f"Commit of job {job_id} crashed: {e}")
            capture_job_error(e, job=job)
            self.fail(job_id, f"Commit failed: {type(e).__name__}: {e}", allow_committing=True)
            raise CommitFailure(f"{type(e).__name__}: {e}") from e

        self._transition(
            job_id,
            [ExtractionJobStatus.STAGING],
            status=ExtractionJobStatus.COMPLETED,
            completed_at=timezone.now(),
            rows_inserted=result.inserted,
            rows_failed=F("rows_failed") + result.failed,
        )
        job = self._get(job_id)
        if result.errors:
            JobLogger(job_id).warn(
                f"{result.failed} rows rejected by the target table",
                details={"errors": result.errors},
            )

        self._discard_staging(job)
        self._release_lease(job)
        emit_job_event(job, events.JOB_COMMITTED, inserted=result.inserted, failed=result.failed)
        emit_job_event(job, events.JOB_COMPLETED)
        return self._get(job_id)

    def cancel(self, job_id) -> ExtractionJob:
        """
        pending|running|staging -> cancelled.

        A running job stops at its next checkpoint. Staged data is discarded.
        """
        if not ExtractionJob.objects.filter(
            pk=job_id, status__in=list(IN_FLIGHT_STATUSES), committed_at__isnull=True
        ).update(status=ExtractionJobStatus.CANCELLED, completed_at=timezone.now()):
            job = self._get(job_id)
            raise InvalidJobState(job_id, job.status, "cancel")

        job = self._get(job_id)
        self._discard_staging(job)
        self._release_lease(job)
        emit_job_event(job, events.JOB_CANCELLED)
        return self._get(job_id)

    def fail(
        self,
        job_id,
        error_message: str,
        details: Optional[dict] = None,
        allow_committing: bool = False,
    ) -> bool:
        """
        Mark an in-flight job failed. Returns False if it had already left flight.

        A job whose commit has been claimed only fails from the commit path.
        """
        queryset = ExtractionJob.objects.filter(pk=job_id, status__in=list(IN_FLIGHT_STATUSES))
        if not allow_committing:
            queryset = queryset.filter(committed_at__isnull=True)

        fields = {
            "status": ExtractionJobStatus.FAILED,
            "completed_at": timezone.now(),
            "error_message": error_message[:5000],
        }
        if details is not None:
            fields["error_details"] = details

        if not queryset.update(**fields):
            return False

        job = self._get(job_id)
        self._discard_staging(job)
        self._release_lease(job)
        JobLogger(job_id).error(error_message, details=details)
        emit_job_event(job, events.JOB_FAILED, error=error_message)
        return True

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, job_id) -> ExtractionJob:
        """
        Run a pending job to staging (or to completion in auto sync mode).

        Errors end in the job's failed/cancelled state rather than propagating.
        """
        job = self._get(job_id)
        if job.status != ExtractionJobStatus.PENDING:
            logger.info(f"Job {job_id} is {job.status}, not executing")
            return job

        try:
            plan = build_plan(
                Assignment.objects.select_related("web_source").get(pk=job.assignment_id)
            )
        except ConfigurationError as e:
            self.fail(job_id, f"Configuration error: {e}")
            return self._get(job_id)

        try:
            self.start(job_id)
        except JobCancelled:
            return self._get(job_id)

        job_logger = JobLogger(job_id)
        hooks = JobRunHooks(job_id, job_logger, CancellationToken(job_id))
        runner = self.runner or ExtractionRunner()

        try:
            outcome = async_to_sync(runner.run)(plan, mode=FULL, hooks=hooks)
        except JobCancelled:
            job_logger.info("Run stopped after cancellation")
            return self._get(job_id)
        except NoDataExtracted as e:
            job_logger.flush_suppressed()
            self.fail(job_id, str(e))
            return self._get(job_id)
        except Exception as e:
            logger.exception(f"Job {job_id} crashed: {e}")
            capture_job_error(e, job=job)
            self.fail(job_id, f"{type(e).__name__}: {e}")
            return self._get(job_id)

        job_logger.flush_suppressed()
        job_logger.info(
            f"Extracted {outcome.rows_extracted} rows from {outcome.pages_processed} pages "
            f"({outcome.rows_failed} rows failed)"
        )

        try:
            return self.stage(job_id, outcome)
        except JobCancelled:
            return self._get(job_id)
        except CommitFailure:
            return self._get(job_id)
