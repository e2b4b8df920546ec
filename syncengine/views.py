"""
Service-level views.

Health check endpoint for monitoring and load balancer checks.
"""

from datetime import timedelta

from django.db import connection
from django.http import JsonResponse
from django.utils import timezone

from syncengine.models import ExtractionJob, ExtractionJobStatus


def get_redis_connection():
    """
    Get Redis connection for health check.

    Returns:
        Redis client if the cache is django-redis, None otherwise.
    """
    from django.core.cache import cache

    if hasattr(cache, "client"):
        return cache.client.get_client()
    return None


def get_celery_worker_count():
    """
    Get the count of active Celery workers.

    Returns:
        int: Number of active workers, 0 if none answer.
    """
    from config.celery import app as celery_app

    inspect = celery_app.control.inspect(timeout=1.0)
    active = inspect.active()
    if active:
        return len(active)
    return 0


def health_check(request):
    """
    Health check endpoint for the extraction service.

    Endpoint: GET /api/health/
    No authentication required (for load balancer checks).

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - redis: "connected", "not_configured", or "error"
        - celery_workers: integer count of active workers
        - jobs_in_flight: jobs pending, running or staging
        - jobs_failed_24h: jobs failed in the last 24 hours

    Returns:
        HTTP 200 for healthy, HTTP 503 for unhealthy
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception:
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    # Redis and Celery degrade gracefully
    redis_status = "not_configured"
    try:
        redis_client = get_redis_connection()
        if redis_client is not None:
            redis_status = "connected" if redis_client.ping() else "error"
    except Exception:
        redis_status = "error"

    try:
        celery_workers = get_celery_worker_count()
    except Exception:
        celery_workers = 0

    jobs_in_flight = None
    jobs_failed_24h = None
    if database_status == "connected":
        jobs_in_flight = ExtractionJob.objects.filter(
            status__in=[
                ExtractionJobStatus.PENDING,
                ExtractionJobStatus.RUNNING,
                ExtractionJobStatus.STAGING,
            ]
        ).count()
        jobs_failed_24h = ExtractionJob.objects.filter(
            status=ExtractionJobStatus.FAILED,
            completed_at__gte=timezone.now() - timedelta(hours=24),
        ).count()

    return JsonResponse(
        {
            "status": status,
            "database": database_status,
            "redis": redis_status,
            "celery_workers": celery_workers,
            "jobs_in_flight": jobs_in_flight,
            "jobs_failed_24h": jobs_failed_24h,
        },
        status=http_status,
    )
