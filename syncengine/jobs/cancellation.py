"""
Cooperative cancellation.

Cancelling a job only flips its status; the run notices at its next page
or row checkpoint. The token reads the job row at most once per
SYNCENGINE_CANCEL_POLL_INTERVAL seconds.
"""

import time
from typing import Optional

from django.conf import settings

from syncengine.exceptions import JobCancelled
from syncengine.models import ExtractionJob, ExtractionJobStatus


class CancellationToken:
    def __init__(self, job_id, poll_interval: Optional[float] = None):
        self.job_id = job_id
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else getattr(settings, "SYNCENGINE_CANCEL_POLL_INTERVAL", 2.0)
        )
        self._last_check = 0.0
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def check(self) -> None:
        """Raise JobCancelled if the job has been cancelled."""
        if self._cancelled:
            raise JobCancelled(f"Job {self.job_id} was cancelled")

        now = time.monotonic()
        if self._last_check and now - self._last_check < self.poll_interval:
            return
        self._last_check = now

        if ExtractionJob.objects.filter(
            pk=self.job_id, status=ExtractionJobStatus.CANCELLED
        ).exists():
            self._cancelled = True
            raise JobCancelled(f"Job {self.job_id} was cancelled")
