"""
Django base settings for the SyncEngine extraction service.

This module contains settings common to all environments.
For more information on this file, see
https://docs.djangoproject.com/en/4.2/topics/settings/
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "SECRET_KEY",
    "django-insecure-syncengine-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DEBUG", "True") == "True"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third-party apps
    "rest_framework",
    "drf_spectacular",
    # Local apps
    "syncengine",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]


# Database
# Configured in environment-specific settings (development.py, production.py, test.py).
# Target tables are written through additional aliases named by DataSource.connection_alias.

DATABASES = {
    # Override in environment-specific settings
}


AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]


# Internationalization

LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True


# Static files (CSS, JavaScript, Images)

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Cache Configuration
# Used for cross-process request pacing. Configured in environment-specific settings.

CACHES = {
    # Override in environment-specific settings
}


# Celery Configuration
# https://docs.celeryproject.org/en/stable/django/first-steps-with-django.html

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 60 * 60  # 1 hour max for a full extraction


# Django REST Framework Configuration

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 100,
}


SPECTACULAR_SETTINGS = {
    "TITLE": "SyncEngine Extraction API",
    "DESCRIPTION": "Website-to-table extraction jobs, staging and scheduling",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}


# Logging Configuration

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
        "syncengine": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# Sentry Configuration

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2"))

import sentry_sdk

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        # Auth headers and cookies of scraped sites must not leave the service
        send_default_pii=False,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        environment=SENTRY_ENVIRONMENT,
    )


# SyncEngine Configuration

# Timeout for a single page fetch (seconds)
SYNCENGINE_REQUEST_TIMEOUT = int(os.getenv("SYNCENGINE_REQUEST_TIMEOUT", "30"))

# Attempts per page for retryable fetch failures (network, timeout, 5xx)
SYNCENGINE_FETCH_MAX_ATTEMPTS = int(os.getenv("SYNCENGINE_FETCH_MAX_ATTEMPTS", "3"))

# Pacing default when a web source does not configure one (milliseconds)
SYNCENGINE_DEFAULT_REQUEST_DELAY_MS = int(
    os.getenv("SYNCENGINE_DEFAULT_REQUEST_DELAY_MS", "1000")
)

SYNCENGINE_USER_AGENT = os.getenv(
    "SYNCENGINE_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

# Sample runs stop after this many rows
SYNCENGINE_SAMPLE_MAX_ROWS = int(os.getenv("SYNCENGINE_SAMPLE_MAX_ROWS", "5"))

# Hard page cap when the pagination config does not give one
SYNCENGINE_DEFAULT_MAX_PAGES = int(os.getenv("SYNCENGINE_DEFAULT_MAX_PAGES", "100"))

# Generated page sequences only stop on an empty page after this many pages
SYNCENGINE_MIN_PAGES = int(os.getenv("SYNCENGINE_MIN_PAGES", "1"))

# Staged payloads above the inline limit spill to files in this directory
SYNCENGINE_STAGING_DIR = os.getenv(
    "SYNCENGINE_STAGING_DIR", str(BASE_DIR / "output" / "staging")
)
SYNCENGINE_STAGING_INLINE_LIMIT = int(
    os.getenv("SYNCENGINE_STAGING_INLINE_LIMIT", str(1024 * 1024))
)

# Cron schedules are evaluated in this zone
SYNCENGINE_SCHEDULER_TIMEZONE = os.getenv("SYNCENGINE_SCHEDULER_TIMEZONE", "UTC")

# Minimum seconds between cancellation checks against the database
SYNCENGINE_CANCEL_POLL_INTERVAL = float(
    os.getenv("SYNCENGINE_CANCEL_POLL_INTERVAL", "2.0")
)

# Hybrid sources also escalate on JavaScript placeholder / loading pages
SYNCENGINE_HYBRID_CONTENT_HEURISTICS = (
    os.getenv("SYNCENGINE_HYBRID_CONTENT_HEURISTICS", "False") == "True"
)

# Dotted path of a callable(web_source) -> dict that resolves auth secrets
SYNCENGINE_SECRETS_RESOLVER = os.getenv(
    "SYNCENGINE_SECRETS_RESOLVER", "syncengine.secrets.resolve_stored_reference"
)

# LLM page analyzer / capture service
SYNCENGINE_ANALYZER_URL = os.getenv("SYNCENGINE_ANALYZER_URL", "http://localhost:8001")
SYNCENGINE_ANALYZER_TOKEN = os.getenv("SYNCENGINE_ANALYZER_TOKEN", "")
SYNCENGINE_ANALYZER_TIMEOUT = float(os.getenv("SYNCENGINE_ANALYZER_TIMEOUT", "120"))
