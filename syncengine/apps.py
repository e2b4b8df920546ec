"""
SyncEngine application configuration.
"""

from django.apps import AppConfig


class SyncEngineConfig(AppConfig):
    """Configuration for the syncengine Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "syncengine"
    verbose_name = "Sync Engine"

    def ready(self):
        """
        Register signal handlers.

        - job events -> process log and schedule status
        - assignment saves -> schedule sync
        """
        from syncengine import signals  # noqa: F401
