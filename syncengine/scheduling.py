"""
Assignment scheduling.

Recurring triggers are AssignmentSchedule rows; Celery beat runs
check_due_schedules every minute, which calls Scheduler.fire_due().

- hourly/daily/weekly are fixed intervals from the previous fire
- cron expressions are evaluated with APScheduler's CronTrigger in
  SYNCENGINE_SCHEDULER_TIMEZONE
- only active assignments in auto sync mode with a non-manual schedule
  keep a recurring trigger; anything else is unscheduled
- every fire checks the assignment lease before creating a job, and job
  creation takes the lease; a recurring fire on a busy assignment is
  skipped, a manual trigger raises AlreadyRunning
"""

import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from apscheduler.triggers.cron import CronTrigger
from django.conf import settings
from django.utils import timezone

from syncengine.exceptions import AlreadyRunning, ConfigurationError, InvalidSchedule
from syncengine.models import (
    Assignment,
    AssignmentLease,
    AssignmentSchedule,
    AssignmentStatus,
    ScheduleType,
    TriggerSource,
)

logger = logging.getLogger(__name__)

SCHEDULE_INTERVALS = {
    ScheduleType.HOURLY: timedelta(hours=1),
    ScheduleType.DAILY: timedelta(hours=24),
    ScheduleType.WEEKLY: timedelta(days=7),
}


def scheduler_timezone() -> str:
    return getattr(settings, "SYNCENGINE_SCHEDULER_TIMEZONE", "UTC")


def validate_cron_expression(expression: str) -> CronTrigger:
    """
    Parse a five-field crontab expression.

    Raises:
        InvalidSchedule: empty or unparseable expression
    """
    if not expression or not expression.strip():
        raise InvalidSchedule("Cron schedule requires a cron expression")
    try:
        return CronTrigger.from_crontab(expression.strip(), timezone=scheduler_timezone())
    except ValueError as e:
        raise InvalidSchedule(f"Invalid cron expression '{expression}': {e}")


def calculate_next_run(schedule_type: str, cron_expression: str = "", from_time=None):
    """
    Calculate the next run time strictly after ``from_time``.

    Returns:
        datetime or None: None for manual schedules
    """
    if from_time is None:
        from_time = timezone.now()

    if schedule_type == ScheduleType.CRON:
        trigger = validate_cron_expression(cron_expression)
        # Cron fields have minute resolution; step past the current second
        return trigger.get_next_fire_time(None, from_time + timedelta(seconds=1))

    interval = SCHEDULE_INTERVALS.get(schedule_type)
    if interval is None:
        return None
    return from_time + interval


def _default_dispatch(job) -> None:
    from syncengine.tasks import run_extraction_job

    run_extraction_job.apply_async(args=[str(job.id)], queue="extraction")


class Scheduler:
    """
    Maps assignments to recurring triggers and ad-hoc runs.

    Args:
        state_machine: JobStateMachine used to create jobs
        dispatch: Callable handing a created job to a worker
    """

    def __init__(self, state_machine=None, dispatch: Optional[Callable] = None):
        self._state_machine = state_machine
        self.dispatch = dispatch or _default_dispatch

    @property
    def state_machine(self):
        if self._state_machine is None:
            from syncengine.jobs.lifecycle import JobStateMachine

            self._state_machine = JobStateMachine()
        return self._state_machine

    def schedule(self, assignment: Assignment) -> bool:
        """
        Create or refresh the recurring trigger of an assignment.

        Returns:
            True if the assignment now has an active schedule

        Raises:
            InvalidSchedule: cron schedule with a bad expression
        """
        if not assignment.is_recurring():
            self.unschedule(assignment.pk)
            return False

        existing = AssignmentSchedule.objects.filter(assignment_id=assignment.pk).first()
        unchanged = (
            existing is not None
            and existing.is_active
            and existing.schedule_type == assignment.schedule_type
            and existing.cron_expression == assignment.cron_expression
        )
        if unchanged:
            return True

        next_run = calculate_next_run(assignment.schedule_type, assignment.cron_expression)
        AssignmentSchedule.objects.update_or_create(
            assignment=assignment,
            defaults={
                "schedule_type": assignment.schedule_type,
                "cron_expression": assignment.cron_expression,
                "next_run_at": next_run,
                "is_active": True,
            },
        )
        logger.info(
            f"Scheduled assignment {assignment.name} ({assignment.schedule_type}), "
            f"next run {next_run.isoformat()}"
        )
        return True

    def unschedule(self, assignment_id) -> bool:
        """Deactivate an assignment's trigger. Returns False if none was active."""
        updated = AssignmentSchedule.objects.filter(
            assignment_id=assignment_id, is_active=True
        ).update(is_active=False)
        if updated:
            logger.info(f"Unscheduled assignment {assignment_id}")
        return bool(updated)

    def sync_assignment(self, assignment: Assignment) -> bool:
        """Schedule or unschedule to match the assignment's current settings."""
        try:
            return self.schedule(assignment)
        except ConfigurationError as e:
            logger.warning(f"Not scheduling assignment {assignment.pk}: {e}")
            self.unschedule(assignment.pk)
            return False

    def trigger_now(self, assignment_id, mode: Optional[str] = None):
        """
        Create and dispatch a manual job.

        Args:
            assignment_id: Assignment to run
            mode: Sync mode for the job ("manual" or "auto"); defaults to the
                assignment's own

        Returns:
            The id of the created job

        Raises:
            AlreadyRunning: the assignment has a job in flight
            ConfigurationError: the assignment cannot run
        """
        lease = AssignmentLease.objects.filter(assignment_id=assignment_id).first()
        if lease is not None:
            raise AlreadyRunning(assignment_id, lease.job_id)

        job = self.state_machine.create_job(
            assignment_id, trigger_source=TriggerSource.MANUAL, sync_mode=mode
        )
        Assignment.objects.filter(pk=assignment_id, status=AssignmentStatus.DRAFT).update(
            status=AssignmentStatus.TESTING, updated_at=timezone.now()
        )
        self.dispatch(job)
        return job.id

    def _fire(self, schedule: AssignmentSchedule, now) -> Optional[str]:
        assignment = schedule.assignment

        try:
            next_run = calculate_next_run(schedule.schedule_type, schedule.cron_expression, now)
        except InvalidSchedule as e:
            logger.error(f"Deactivating schedule of assignment {assignment.pk}: {e}")
            schedule.is_active = False
            schedule.save(update_fields=["is_active"])
            return None

        schedule.next_run_at = next_run
        schedule.last_run_at = now

        if not assignment.is_recurring():
            schedule.is_active = False
            schedule.save(update_fields=["next_run_at", "last_run_at", "is_active"])
            return None

        if AssignmentLease.objects.filter(assignment_id=assignment.pk).exists():
            logger.info(f"Assignment {assignment.name} still has a job in flight, skipping fire")
            schedule.last_status = "skipped"
            schedule.save(update_fields=["next_run_at", "last_run_at", "last_status"])
            return None

        try:
            job = self.state_machine.create_job(
                assignment.pk, trigger_source=TriggerSource.SCHEDULED
            )
        except AlreadyRunning:
            logger.info(f"Assignment {assignment.name} became busy, skipping fire")
            schedule.last_status = "skipped"
            schedule.save(update_fields=["next_run_at", "last_run_at", "last_status"])
            return None
        except ConfigurationError as e:
            logger.error(f"Scheduled run of assignment {assignment.name} rejected: {e}")
            schedule.last_status = "rejected"
            schedule.save(update_fields=["next_run_at", "last_run_at", "last_status"])
            return None

        schedule.last_status = job.status
        schedule.last_job_id = job.id
        schedule.save(
            update_fields=["next_run_at", "last_run_at", "last_status", "last_job_id"]
        )
        self.dispatch(job)
        return str(job.id)

    def fire_due(self, now=None) -> List[str]:
        """Fire every active schedule whose next run is due. Returns created job ids."""
        now = now or timezone.now()
        due = AssignmentSchedule.objects.filter(
            is_active=True, next_run_at__lte=now
        ).select_related("assignment")

        jobs = []
        for schedule in due:
            job_id = self._fire(schedule, now)
            if job_id:
                logger.info(f"Dispatched scheduled job {job_id} for assignment {schedule.assignment_id}")
                jobs.append(job_id)
        return jobs

    def initialize(self) -> Dict[str, int]:
        """Reconcile schedules with every assignment, e.g. after a deploy."""
        scheduled = 0
        unscheduled = 0
        for assignment in Assignment.objects.all():
            if self.sync_assignment(assignment):
                scheduled += 1
            else:
                unscheduled += 1
        logger.info(f"Scheduler initialised: {scheduled} scheduled, {unscheduled} not recurring")
        return {"scheduled": scheduled, "unscheduled": unscheduled}
