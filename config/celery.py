"""
Celery configuration for the SyncEngine extraction service.

Extraction jobs, commits and structure analysis run on separate queues;
beat drives the assignment scheduler once a minute.
"""

import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("syncengine")

# namespace='CELERY' means all celery-related configuration keys
# should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()

app.conf.task_queues = {
    "extraction": {
        "exchange": "extraction",
        "routing_key": "extraction",
    },
    "commit": {
        "exchange": "commit",
        "routing_key": "commit",
    },
    "analysis": {
        "exchange": "analysis",
        "routing_key": "analysis",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

app.conf.task_routes = {
    "syncengine.tasks.run_extraction_job": {"queue": "extraction"},
    "syncengine.tasks.commit_extraction_job": {"queue": "commit"},
    "syncengine.tasks.analyze_web_source": {"queue": "analysis"},
    "syncengine.tasks.check_due_schedules": {"queue": "default"},
}

app.conf.beat_schedule = {
    "check-due-schedules-every-minute": {
        "task": "syncengine.tasks.check_due_schedules",
        "schedule": crontab(minute="*"),
    },
}
