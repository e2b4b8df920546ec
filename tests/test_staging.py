"""
Tests for staged payload storage.
"""

import json
from pathlib import Path

import pytest


class TestStagingStore:
    """Inline payloads, spill files, reads and discards."""

    def test_small_payload_is_inline(self, staging_store):
        rows = [{"title": "Widget", "price": 9.99}]

        payload = staging_store.write("job-1", rows, ["title", "price"])

        assert payload.inline == rows
        assert payload.path == ""
        assert payload.job_fields()["staged_row_count"] == 1

    def test_large_payload_spills_to_file(self, tmp_path):
        from syncengine.staging import StagingStore

        store = StagingStore(directory=str(tmp_path), inline_limit=64)
        rows = [{"title": f"Widget {i}", "price": i} for i in range(20)]

        payload = store.write("job-2", rows, ["title", "price"])

        assert payload.inline is None
        assert Path(payload.path).name == "job-2.json"
        assert json.loads(Path(payload.path).read_text()) == rows

    def test_read_inline_and_file(self, tmp_path):
        from syncengine.models import ExtractionJob
        from syncengine.staging import StagingStore

        store = StagingStore(directory=str(tmp_path), inline_limit=10)
        rows = [{"title": "Widget"}]
        payload = store.write("job-3", rows, ["title"])

        from_file = ExtractionJob(id="00000000-0000-0000-0000-000000000003", **payload.job_fields())
        inline = ExtractionJob(staged_data_json=rows)

        assert store.read(from_file) == rows
        assert store.read(inline) == rows

    def test_read_without_payload_raises(self):
        from syncengine.exceptions import StagedDataNotFound
        from syncengine.models import ExtractionJob
        from syncengine.staging import StagingStore

        with pytest.raises(StagedDataNotFound):
            StagingStore().read(ExtractionJob())

    def test_read_corrupt_file_raises_not_found(self, tmp_path):
        from syncengine.exceptions import StagedDataNotFound
        from syncengine.models import ExtractionJob
        from syncengine.staging import StagingStore

        path = tmp_path / "job-3.json"
        path.write_text("[{", encoding="utf-8")

        with pytest.raises(StagedDataNotFound, match="unreadable"):
            StagingStore().read(ExtractionJob(staged_data_path=str(path)))

    def test_discard_removes_file_once(self, tmp_path):
        from syncengine.exceptions import StagedDataNotFound
        from syncengine.models import ExtractionJob
        from syncengine.staging import StagingStore

        store = StagingStore(directory=str(tmp_path), inline_limit=0)
        payload = store.write("job-4", [{"title": "Widget"}], ["title"])
        job = ExtractionJob(staged_data_path=payload.path)

        assert store.discard(job) is True
        assert store.discard(job) is False
        with pytest.raises(StagedDataNotFound, match="no longer exists"):
            store.read(job)

    def test_dates_and_decimals_are_serialisable(self, staging_store):
        from datetime import date
        from decimal import Decimal

        payload = staging_store.write(
            "job-5", [{"published": date(2024, 2, 3), "price": Decimal("9.99")}], ["published", "price"]
        )

        assert payload.inline == [{"published": "2024-02-03", "price": "9.99"}]
