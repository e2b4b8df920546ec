"""
Celery tasks for the extraction engine.

- run_extraction_job: worker task executing one pending job
- commit_extraction_job: writes a staged job to its target table
- check_due_schedules: periodic task (Celery beat, every minute) firing
  due assignment schedules
- analyze_web_source: structure analysis of a web source
"""

import logging
from typing import Any, Dict, Optional

from celery import shared_task
from django.utils import timezone

from syncengine.exceptions import CommitFailure, FetchFailure, InvalidJobState
from syncengine.models import ExtractionJob, WebSource

logger = logging.getLogger(__name__)


@shared_task(name="syncengine.tasks.run_extraction_job", bind=True)
def run_extraction_job(self, job_id: str) -> Dict[str, Any]:
    """
    Execute a pending extraction job.

    Args:
        job_id: UUID of the ExtractionJob

    Returns:
        Dict with the job's final status and counters
    """
    from syncengine.jobs.lifecycle import JobStateMachine

    logger.info(f"Starting extraction job {job_id}")

    if not ExtractionJob.objects.filter(pk=job_id).exists():
        logger.error(f"Extraction job {job_id} not found")
        return {"error": "Job not found", "status": "failed"}

    job = JobStateMachine().execute(job_id)

    logger.info(
        f"Extraction job {job_id} finished as {job.status}: "
        f"{job.rows_extracted} rows, {job.pages_processed} pages"
    )
    return {
        "job_id": str(job.id),
        "status": job.status,
        "pages_processed": job.pages_processed,
        "rows_extracted": job.rows_extracted,
        "rows_failed": job.rows_failed,
        "rows_inserted": job.rows_inserted,
    }


@shared_task(name="syncengine.tasks.commit_extraction_job", bind=True)
def commit_extraction_job(self, job_id: str) -> Dict[str, Any]:
    """Commit a staged job."""
    from syncengine.jobs.lifecycle import JobStateMachine

    try:
        job = JobStateMachine().commit(job_id)
    except ExtractionJob.DoesNotExist:
        logger.error(f"Extraction job {job_id} not found")
        return {"error": "Job not found", "status": "failed"}
    except (InvalidJobState, CommitFailure) as e:
        logger.error(f"Commit of job {job_id} failed: {e}")
        return {"job_id": job_id, "error": str(e), "status": "failed"}

    return {
        "job_id": str(job.id),
        "status": job.status,
        "rows_inserted": job.rows_inserted,
        "rows_failed": job.rows_failed,
    }


@shared_task(name="syncengine.tasks.check_due_schedules")
def check_due_schedules() -> Dict[str, Any]:
    """
    Periodic task firing due assignment schedules.

    Runs every minute via Celery Beat.
    """
    from syncengine.scheduling import Scheduler

    now = timezone.now()
    jobs_created = Scheduler().fire_due(now)

    if jobs_created:
        logger.info(f"Due schedule check complete: {len(jobs_created)} jobs dispatched")

    return {
        "checked": True,
        "jobs_created": jobs_created,
        "timestamp": now.isoformat(),
    }


@shared_task(name="syncengine.tasks.analyze_web_source", bind=True)
def analyze_web_source(self, web_source_id: str, url: Optional[str] = None) -> Dict[str, Any]:
    """Analyze a web source's structure and cache it on the source."""
    from syncengine.extraction.structure import analyze_web_source as analyze

    try:
        web_source = WebSource.objects.get(id=web_source_id)
    except WebSource.DoesNotExist:
        logger.error(f"Web source {web_source_id} not found")
        return {"error": "Web source not found", "status": "failed"}

    try:
        structure = analyze(web_source, url=url)
    except FetchFailure as e:
        logger.error(f"Analysis of {web_source.name} failed: {e}")
        return {"web_source_id": web_source_id, "error": str(e), "status": "failed"}

    return {
        "web_source_id": web_source_id,
        "status": "completed",
        "repeating_elements": len(structure["repeating_elements"]),
        "pagination": structure["pagination"],
    }
