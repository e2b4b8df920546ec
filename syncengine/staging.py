"""
Staged payload storage.

Rows of a finished run wait here until commit. Payloads up to
SYNCENGINE_STAGING_INLINE_LIMIT bytes of JSON are stored on the job row;
larger ones spill to ``<SYNCENGINE_STAGING_DIR>/<job_id>.json``.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

from syncengine.exceptions import StagedDataNotFound

logger = logging.getLogger(__name__)


@dataclass
class StagedPayload:
    """Where a job's staged rows live. Exactly one of inline/path is set."""

    row_count: int
    columns: List[str]
    inline: Optional[List[Dict[str, Any]]] = None
    path: str = ""

    def job_fields(self) -> dict:
        return {
            "staged_data_json": self.inline,
            "staged_data_path": self.path,
            "staged_columns": self.columns,
            "staged_row_count": self.row_count,
        }


class StagingStore:
    """Writes, reads and discards staged payloads."""

    def __init__(self, directory: Optional[str] = None, inline_limit: Optional[int] = None):
        self.directory = Path(
            directory or getattr(settings, "SYNCENGINE_STAGING_DIR", "output/staging")
        )
        self.inline_limit = (
            inline_limit
            if inline_limit is not None
            else getattr(settings, "SYNCENGINE_STAGING_INLINE_LIMIT", 1024 * 1024)
        )

    def _path_for(self, job_id) -> Path:
        return self.directory / f"{job_id}.json"

    def write(self, job_id, rows: List[Dict[str, Any]], columns: List[str]) -> StagedPayload:
        encoded = json.dumps(rows, cls=DjangoJSONEncoder)

        if len(encoded.encode("utf-8")) <= self.inline_limit:
            return StagedPayload(row_count=len(rows), columns=columns, inline=json.loads(encoded))

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path_for(job_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(encoded, encoding="utf-8")
        tmp_path.replace(path)
        logger.info(f"Staged {len(rows)} rows for job {job_id} to {path}")
        return StagedPayload(row_count=len(rows), columns=columns, path=str(path))

    def read(self, job) -> List[Dict[str, Any]]:
        """
        Load a job's staged rows.

        Raises:
            StagedDataNotFound: nothing staged, or the staging file is gone
                or unreadable
        """
        if job.staged_data_json is not None:
            return job.staged_data_json

        if job.staged_data_path:
            try:
                return json.loads(Path(job.staged_data_path).read_text(encoding="utf-8"))
            except FileNotFoundError:
                raise StagedDataNotFound(
                    f"Staging file for job {job.id} no longer exists"
                )
            except ValueError as e:
                raise StagedDataNotFound(f"Staging file for job {job.id} is unreadable: {e}")

        raise StagedDataNotFound(f"Job {job.id} has no staged data")

    def discard(self, job) -> bool:
        """Delete a job's staging file, if any. Returns True if a file was removed."""
        if not job.staged_data_path:
            return False
        try:
            Path(job.staged_data_path).unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Discarded staging file for job {job.id}")
        return True


CLEARED_STAGING_FIELDS = {
    "staged_data_json": None,
    "staged_data_path": "",
}
