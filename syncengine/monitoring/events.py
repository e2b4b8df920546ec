"""
Structured job events.

Every job state transition and every commit is emitted once as:
- a log record on the ``syncengine.events`` logger
- a Sentry breadcrumb
- the ``job_event`` Django signal (receivers: the process log writer,
  plus anything a deployment wires up for auditing)
"""

import logging

from django.dispatch import Signal

from syncengine.monitoring.sentry_integration import add_job_breadcrumb

logger = logging.getLogger("syncengine.events")

# Sent with: job_id, assignment_id, event, status, data
job_event = Signal()

JOB_CREATED = "created"
JOB_STARTED = "started"
JOB_STAGED = "staged"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_CANCELLED = "cancelled"
JOB_COMMITTED = "committed"


def emit_job_event(job, event: str, **data) -> None:
    """Emit one structured event for a job."""
    logger.info(
        f"job={job.id} assignment={job.assignment_id} event={event} status={job.status}",
        extra={
            "job_id": str(job.id),
            "assignment_id": str(job.assignment_id),
            "job_event": event,
        },
    )
    add_job_breadcrumb(job.id, event, {"status": job.status, **data})
    job_event.send(
        sender=type(job),
        job_id=job.id,
        assignment_id=job.assignment_id,
        event=event,
        status=job.status,
        data=data,
    )
