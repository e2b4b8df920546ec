"""
Management command to remove staging files no job still needs.

A staging file is kept while its job is staging; files of jobs that
finished, and files with no job at all, are removed.

Usage:
    python manage.py cleanup_staging
    python manage.py cleanup_staging --dry-run
"""

import logging
from pathlib import Path

from django.core.management.base import BaseCommand

from syncengine.models import ExtractionJob, ExtractionJobStatus
from syncengine.staging import StagingStore

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Delete orphaned staging files."""

    help = 'Delete staging files that belong to no staged job'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List files without deleting them',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        store = StagingStore()

        if not store.directory.exists():
            self.stdout.write(self.style.SUCCESS('No staging directory, nothing to clean up'))
            return

        keep = {
            str(Path(path).resolve())
            for path in ExtractionJob.objects.filter(
                status=ExtractionJobStatus.STAGING
            ).exclude(staged_data_path='').values_list('staged_data_path', flat=True)
        }

        removed = 0
        for path in sorted(store.directory.glob('*.json')):
            if str(path.resolve()) in keep:
                continue
            if dry_run:
                self.stdout.write(f'  Would remove {path.name}')
            else:
                path.unlink(missing_ok=True)
                logger.info(f"Removed orphaned staging file {path}")
            removed += 1

        if dry_run:
            self.stdout.write(self.style.WARNING(f'Dry run: would remove {removed} files'))
        else:
            self.stdout.write(self.style.SUCCESS(f'Removed {removed} staging files'))
