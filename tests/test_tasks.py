"""
Tests for Celery tasks.

Tasks run eagerly in tests; the state machine and analysis are patched
where a task would otherwise reach the network.
"""

import uuid
from unittest.mock import MagicMock, patch

import pytest


@pytest.mark.django_db
class TestRunExtractionJob:
    def test_missing_job(self):
        from syncengine.tasks import run_extraction_job

        result = run_extraction_job(str(uuid.uuid4()))

        assert result == {"error": "Job not found", "status": "failed"}

    def test_executes_job(self, make_job):
        from syncengine.tasks import run_extraction_job

        job = make_job("pending")
        finished = MagicMock(
            id=job.id,
            status="staging",
            pages_processed=2,
            rows_extracted=40,
            rows_failed=1,
            rows_inserted=0,
        )

        with patch("syncengine.jobs.lifecycle.JobStateMachine.execute", return_value=finished) as mock_execute:
            result = run_extraction_job(str(job.id))

        mock_execute.assert_called_once_with(str(job.id))
        assert result["status"] == "staging"
        assert result["rows_extracted"] == 40


@pytest.mark.django_db
class TestCommitExtractionJob:
    def test_missing_job(self):
        from syncengine.tasks import commit_extraction_job

        result = commit_extraction_job(str(uuid.uuid4()))

        assert result["error"] == "Job not found"

    def test_job_not_staging(self, make_job):
        from syncengine.tasks import commit_extraction_job

        job = make_job("running")

        result = commit_extraction_job(str(job.id))

        assert result["status"] == "failed"
        assert "running" in result["error"]


@pytest.mark.django_db
class TestCheckDueSchedules:
    def test_fires_due_schedules(self):
        from syncengine.tasks import check_due_schedules

        with patch("syncengine.scheduling.Scheduler.fire_due", return_value=["job-1"]) as mock_fire:
            result = check_due_schedules()

        mock_fire.assert_called_once()
        assert result["checked"] is True
        assert result["jobs_created"] == ["job-1"]


@pytest.mark.django_db
class TestAnalyzeWebSource:
    def test_missing_web_source(self):
        from syncengine.tasks import analyze_web_source

        result = analyze_web_source(str(uuid.uuid4()))

        assert result["error"] == "Web source not found"

    def test_fetch_failure(self, web_source):
        from syncengine.exceptions import NetworkError
        from syncengine.tasks import analyze_web_source

        with patch(
            "syncengine.extraction.structure.analyze_web_source",
            side_effect=NetworkError("connection refused", url=web_source.base_url),
        ):
            result = analyze_web_source(str(web_source.id))

        assert result["status"] == "failed"
        assert "connection refused" in result["error"]

    def test_analysis_summary(self, web_source):
        from syncengine.tasks import analyze_web_source

        structure = {
            "repeating_elements": [{"selector": "div.product", "count": 12}],
            "pagination": {"type": "query_param", "param_name": "page"},
        }
        with patch(
            "syncengine.extraction.structure.analyze_web_source", return_value=structure
        ):
            result = analyze_web_source(str(web_source.id))

        assert result["status"] == "completed"
        assert result["repeating_elements"] == 1
        assert result["pagination"]["type"] == "query_param"
