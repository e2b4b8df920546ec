"""
Development settings for the SyncEngine extraction service.

Uses local SQLite, database cache and relaxed settings for development.
"""

import os
from .base import *

DEBUG = True

ALLOWED_HOSTS = ["localhost", "127.0.0.1"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

# Uncomment below to exercise a PostgreSQL target through its own alias
# DATABASES["warehouse"] = {
#     "ENGINE": "django.db.backends.postgresql",
#     "NAME": os.getenv("TARGET_DB_NAME", "warehouse"),
#     "USER": os.getenv("TARGET_DB_USER", "postgres"),
#     "PASSWORD": os.getenv("TARGET_DB_PASSWORD", ""),
#     "HOST": os.getenv("TARGET_DB_HOST", "localhost"),
#     "PORT": os.getenv("TARGET_DB_PORT", "5432"),
# }

# Database cache (no Redis needed for local dev)
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.db.DatabaseCache",
        "LOCATION": "cache_table",
    }
}

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

LOGGING["loggers"]["django"]["level"] = "DEBUG"
LOGGING["loggers"]["syncengine"]["level"] = "DEBUG"

INTERNAL_IPS = ["127.0.0.1"]

AUTH_PASSWORD_VALIDATORS = []

SYNCENGINE_REQUEST_TIMEOUT = 60  # More time for debugging
SYNCENGINE_FETCH_MAX_ATTEMPTS = 1
SYNCENGINE_DEFAULT_REQUEST_DELAY_MS = 500
