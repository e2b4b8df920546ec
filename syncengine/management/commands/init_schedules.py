"""
Management command to reconcile assignment schedules.

Usage:
    python manage.py init_schedules
"""

import logging

from django.core.management.base import BaseCommand

from syncengine.scheduling import Scheduler

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Create or deactivate schedules so they match every assignment."""

    help = 'Schedule recurring assignments and unschedule everything else'

    def handle(self, *args, **options):
        counts = Scheduler().initialize()

        self.stdout.write(
            self.style.SUCCESS(
                f"Scheduled {counts['scheduled']} assignments "
                f"({counts['unscheduled']} not recurring)"
            )
        )
