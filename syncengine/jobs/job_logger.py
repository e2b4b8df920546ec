"""
Per-job diagnostic log.

Writes ProcessLog rows (what operators read in the job view) and mirrors
each entry to the module logger.
"""

import logging
from typing import Optional

from syncengine.models import LogLevel, ProcessLog

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

# Row-level warnings beyond this are counted on the job but not logged
MAX_ROW_ENTRIES = 200


class JobLogger:
    def __init__(self, job_id):
        self.job_id = job_id
        self._row_entries = 0
        self._suppressed = 0

    def log(
        self,
        level: str,
        message: str,
        url: str = "",
        row_index: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> Optional[ProcessLog]:
        if level not in LogLevel.values:
            level = LogLevel.INFO

        if row_index is not None:
            if self._row_entries >= MAX_ROW_ENTRIES:
                self._suppressed += 1
                return None
            self._row_entries += 1

        logger.log(_PY_LEVELS[level], f"[job {self.job_id}] {message}")
        return ProcessLog.objects.create(
            job_id=self.job_id,
            level=level,
            message=message,
            url=url[:2000],
            row_index=row_index,
            details=details,
        )

    def info(self, message: str, **kwargs):
        return self.log(LogLevel.INFO, message, **kwargs)

    def warn(self, message: str, **kwargs):
        return self.log(LogLevel.WARN, message, **kwargs)

    def error(self, message: str, **kwargs):
        return self.log(LogLevel.ERROR, message, **kwargs)

    def flush_suppressed(self):
        """Write one summary entry for row warnings that were not logged."""
        if self._suppressed:
            self.log(
                LogLevel.WARN,
                f"{self._suppressed} further row failures not logged individually",
            )
            self._suppressed = 0
