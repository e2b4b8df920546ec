"""
Test settings for the SyncEngine extraction service.

Uses in-memory SQLite and eager Celery for fast test execution.
"""

import tempfile
from .base import *

DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "unique-snowflake",
    }
}

# Run tasks synchronously
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["syncengine"]["level"] = "WARNING"

AUTH_PASSWORD_VALIDATORS = []

PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

SENTRY_DSN = ""

# Fail fast
SYNCENGINE_REQUEST_TIMEOUT = 5
SYNCENGINE_FETCH_MAX_ATTEMPTS = 1
SYNCENGINE_DEFAULT_REQUEST_DELAY_MS = 0
SYNCENGINE_CANCEL_POLL_INTERVAL = 0
SYNCENGINE_STAGING_DIR = tempfile.mkdtemp(prefix="syncengine-staging-")
