"""
Django signals for the syncengine application.

Active Signals:
- job_event -> ProcessLog entry for every job transition
- job_event -> AssignmentSchedule.last_status for scheduled jobs
- Assignment save -> schedule or unschedule the assignment
"""

from django.db.models.signals import post_save
from django.dispatch import receiver

from syncengine.models import (
    Assignment,
    AssignmentSchedule,
    LogLevel,
    ProcessLog,
)
from syncengine.monitoring.events import JOB_FAILED, job_event

# Fields whose change can affect whether/when an assignment recurs
SCHEDULE_FIELDS = {"status", "sync_mode", "schedule_type", "cron_expression"}


@receiver(job_event)
def record_job_event(sender, job_id, assignment_id, event, status, data, **kwargs):
    """Append a process log entry for each job transition."""
    ProcessLog.objects.create(
        job_id=job_id,
        level=LogLevel.ERROR if event == JOB_FAILED else LogLevel.INFO,
        message=f"Job {event}",
        details={"status": status, **{k: v for k, v in data.items() if v is not None}},
    )


@receiver(job_event)
def update_schedule_status(sender, job_id, assignment_id, event, status, data, **kwargs):
    """Keep the schedule's last_status in step with the job it last created."""
    AssignmentSchedule.objects.filter(
        assignment_id=assignment_id, last_job_id=job_id
    ).update(last_status=status)


@receiver(post_save, sender=Assignment)
def sync_assignment_schedule(sender, instance, created, update_fields=None, **kwargs):
    if update_fields is not None and not SCHEDULE_FIELDS.intersection(update_fields):
        return

    from syncengine.scheduling import Scheduler

    Scheduler().sync_assignment(instance)

