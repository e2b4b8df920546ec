"""
Tests for the extraction REST API.

Job dispatch is patched so runs never reach a worker; the job itself is
created for real so single flight and status codes are exercised.
"""

import uuid
from unittest.mock import MagicMock, Mock, patch

import pytest


@pytest.fixture
def no_dispatch():
    with patch("syncengine.scheduling._default_dispatch") as mock_dispatch:
        yield mock_dispatch


@pytest.mark.django_db
class TestAuthentication:
    """All API endpoints require an authenticated user."""

    def test_run_requires_auth(self, api_client, assignment):
        response = api_client.post(f"/api/v1/assignments/{assignment.id}/run/")

        assert response.status_code == 403

    def test_job_detail_requires_auth(self, api_client, make_job):
        job = make_job("pending")

        response = api_client.get(f"/api/v1/jobs/{job.id}/")

        assert response.status_code == 403


@pytest.mark.django_db
class TestRunAssignment:
    def test_run_creates_job(self, authenticated_client, assignment, no_dispatch):
        from syncengine.models import Assignment, ExtractionJob

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/run/", {}, format="json"
        )

        assert response.status_code == 202
        data = response.json()
        assert data["mode"] == "manual"
        job = ExtractionJob.objects.get(pk=data["job_id"])
        assert job.status == "pending"
        no_dispatch.assert_called_once_with(job)
        assert Assignment.objects.get(pk=assignment.pk).status == "testing"

    def test_run_with_auto_mode(self, authenticated_client, assignment, no_dispatch):
        from syncengine.models import ExtractionJob

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/run/", {"mode": "auto"}, format="json"
        )

        assert response.status_code == 202
        assert ExtractionJob.objects.get(pk=response.json()["job_id"]).sync_mode == "auto"

    def test_invalid_mode(self, authenticated_client, assignment, no_dispatch):
        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/run/", {"mode": "sometimes"}, format="json"
        )

        assert response.status_code == 400
        no_dispatch.assert_not_called()

    def test_conflict_when_job_in_flight(self, authenticated_client, assignment, make_job, no_dispatch):
        running = make_job("running")

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/run/", {}, format="json"
        )

        assert response.status_code == 409
        assert response.json()["job_id"] == str(running.id)

    def test_staging_job_also_blocks(self, authenticated_client, assignment, make_job, no_dispatch):
        make_job("staging", staged_data_json=[{"title": "Widget"}])

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/run/", {}, format="json"
        )

        assert response.status_code == 409

    def test_unknown_assignment(self, authenticated_client, no_dispatch):
        response = authenticated_client.post(f"/api/v1/assignments/{uuid.uuid4()}/run/")

        assert response.status_code == 404

    def test_misconfigured_assignment(self, authenticated_client, assignment, no_dispatch):
        assignment.rules.all().delete()

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/run/", {}, format="json"
        )

        assert response.status_code == 400
        assert "no active extraction rules" in response.json()["error"]


@pytest.mark.django_db
class TestSampleAssignment:
    def test_sample_returns_rows(self, authenticated_client, assignment):
        from syncengine.jobs.sample import SampleResult

        result = SampleResult(
            rows=[{"title": "Widget A", "price": 9.99, "url": None}],
            columns=["title", "price", "url"],
            source_url="https://shop.example.com/products",
            pages_processed=1,
        )
        with patch("syncengine.jobs.sample.run_sample", return_value=result) as mock_run:
            response = authenticated_client.post(
                f"/api/v1/assignments/{assignment.id}/sample/", {"max_rows": 3}, format="json"
            )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["rows"][0]["title"] == "Widget A"
        assert data["first_failure"] is None
        mock_run.assert_called_once_with(assignment.id, max_rows=3)

    @pytest.mark.parametrize("max_rows", [0, 101, "many"])
    def test_invalid_max_rows(self, authenticated_client, assignment, max_rows):
        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/sample/", {"max_rows": max_rows}, format="json"
        )

        assert response.status_code == 400

    def test_sample_configuration_error(self, authenticated_client, assignment):
        from syncengine.exceptions import ConfigurationError

        with patch(
            "syncengine.jobs.sample.run_sample",
            side_effect=ConfigurationError("Assignment has no active extraction rules"),
        ):
            response = authenticated_client.post(
                f"/api/v1/assignments/{assignment.id}/sample/", {}, format="json"
            )

        assert response.status_code == 400

    def test_malformed_item_selector_is_bad_request(self, authenticated_client, assignment):
        from syncengine.models import Assignment

        Assignment.objects.filter(pk=assignment.pk).update(item_selector="div[class=")

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/sample/", {}, format="json"
        )

        assert response.status_code == 400
        assert "Item selector" in response.json()["error"]


@pytest.mark.django_db
class TestAssignmentStatus:
    def test_activate_recurring_assignment_schedules_it(self, authenticated_client, assignment):
        assignment.sync_mode = "auto"
        assignment.schedule_type = "daily"
        assignment.save()

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/status/", {"status": "active"}, format="json"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        assert data["scheduled"] is True
        assert data["next_run_at"] is not None

    def test_disallowed_transition(self, authenticated_client, assignment):
        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/status/", {"status": "paused"}, format="json"
        )

        assert response.status_code == 400

    def test_missing_status(self, authenticated_client, assignment):
        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/status/", {}, format="json"
        )

        assert response.status_code == 400

    def test_schedule_endpoint(self, authenticated_client, assignment):
        response = authenticated_client.get(f"/api/v1/assignments/{assignment.id}/schedule/")

        assert response.status_code == 200
        assert response.json() == {
            "scheduled": False,
            "schedule_type": "manual",
            "recurring_eligible": False,
        }

    def test_schedule_endpoint_for_cron(self, authenticated_client, assignment):
        assignment.status = "active"
        assignment.sync_mode = "auto"
        assignment.schedule_type = "cron"
        assignment.cron_expression = "0 6 * * *"
        assignment.save()

        response = authenticated_client.get(f"/api/v1/assignments/{assignment.id}/schedule/")

        data = response.json()
        assert data["scheduled"] is True
        assert data["cron_expression"] == "0 6 * * *"
        assert "T06:00:00" in data["next_run_at"]


@pytest.mark.django_db
class TestJobEndpoints:
    def test_job_detail(self, authenticated_client, make_job):
        job = make_job("running", pages_processed=2, pages_total=8, current_url="https://shop.example.com/p?page=3")

        response = authenticated_client.get(f"/api/v1/jobs/{job.id}/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert data["progress"]["percent"] == 25
        assert data["progress"]["current_url"].endswith("page=3")

    def test_unknown_job(self, authenticated_client):
        response = authenticated_client.get(f"/api/v1/jobs/{uuid.uuid4()}/")

        assert response.status_code == 404

    def test_cancel_job(self, authenticated_client, make_job):
        from syncengine.models import AssignmentLease

        job = make_job("running")

        response = authenticated_client.post(f"/api/v1/jobs/{job.id}/cancel/")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert not AssignmentLease.objects.filter(job=job).exists()

    def test_cancel_terminal_job(self, authenticated_client, make_job):
        job = make_job("completed")

        response = authenticated_client.post(f"/api/v1/jobs/{job.id}/cancel/")

        assert response.status_code == 409
        assert response.json()["status"] == "completed"

    def test_cancel_unknown_job(self, authenticated_client):
        response = authenticated_client.post(f"/api/v1/jobs/{uuid.uuid4()}/cancel/")

        assert response.status_code == 404

    def test_commit_job(self, authenticated_client, make_job, products_table):
        job = make_job(
            "staging",
            staged_data_json=[{"title": "Widget A", "price": 9.99, "url": None}],
            staged_columns=["title", "price", "url"],
            staged_row_count=1,
        )

        response = authenticated_client.post(f"/api/v1/jobs/{job.id}/commit/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["rows_inserted"] == 1

    def test_commit_non_staging_job(self, authenticated_client, make_job):
        job = make_job("running")

        response = authenticated_client.post(f"/api/v1/jobs/{job.id}/commit/")

        assert response.status_code == 409

    def test_commit_failure(self, authenticated_client, make_job):
        from syncengine.exceptions import CommitFailure

        job = make_job("staging")
        machine = MagicMock()
        machine.commit.side_effect = CommitFailure("Staged data no longer exists")

        with patch("syncengine.api.views._get_state_machine", return_value=machine):
            response = authenticated_client.post(f"/api/v1/jobs/{job.id}/commit/")

        assert response.status_code == 502

    def test_staged_data_pages(self, authenticated_client, make_job):
        rows = [{"title": f"Widget {i}"} for i in range(5)]
        job = make_job("staging", staged_data_json=rows, staged_columns=["title"], staged_row_count=5)

        response = authenticated_client.get(
            f"/api/v1/jobs/{job.id}/staged-data/", {"offset": 1, "limit": 2}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 5
        assert data["rows"] == [{"title": "Widget 1"}, {"title": "Widget 2"}]

    def test_staged_data_missing(self, authenticated_client, make_job):
        job = make_job("completed")

        response = authenticated_client.get(f"/api/v1/jobs/{job.id}/staged-data/")

        assert response.status_code == 404

    def test_logs_filtered_by_level(self, authenticated_client, make_job):
        from syncengine.models import ProcessLog

        job = make_job("running")
        ProcessLog.objects.create(job=job, level="info", message="Started")
        ProcessLog.objects.create(job=job, level="warn", message="Row skipped", row_index=4)

        response = authenticated_client.get(f"/api/v1/jobs/{job.id}/logs/", {"level": "warn"})

        assert response.status_code == 200
        logs = response.json()["logs"]
        assert len(logs) == 1
        assert logs[0]["row_index"] == 4


@pytest.mark.django_db
class TestAnalysisEndpoints:
    def test_analyze_queues_task(self, authenticated_client, web_source):
        task = Mock(id="task-123")

        with patch("syncengine.tasks.analyze_web_source.apply_async", return_value=task) as mock_apply:
            response = authenticated_client.post(
                f"/api/v1/web-sources/{web_source.id}/analyze/", {}, format="json"
            )

        assert response.status_code == 202
        assert response.json()["task_id"] == "task-123"
        mock_apply.assert_called_once_with(args=[str(web_source.id), None], queue="analysis")

    def test_suggest_rules_requires_analysis(self, authenticated_client, assignment):
        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/suggest-rules/", {}, format="json"
        )

        assert response.status_code == 409

    def test_suggest_rules_for_missing_table(self, authenticated_client, assignment):
        assignment.web_source.structure_json = {"repeating_elements": [], "pagination": {}}
        assignment.web_source.save()

        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/suggest-rules/", {}, format="json"
        )

        assert response.status_code == 404


@pytest.mark.django_db
class TestCaptureConfigEndpoint:
    def test_stores_configuration_and_switches_method(self, authenticated_client, assignment):
        from syncengine.extraction.llm_capture import CaptureConfig
        from syncengine.models import Assignment

        capture = CaptureConfig.from_dict({
            "system_prompt": "Extract products",
            "column_mappings": [{"column_name": "title", "json_field": "name"}],
        })

        def generate(target, url=None):
            target.llm_capture_config = capture.to_dict()
            target.save(update_fields=["llm_capture_config"])
            return capture

        with patch(
            "syncengine.extraction.llm_capture.generate_capture_config", side_effect=generate
        ) as mock_generate:
            response = authenticated_client.post(
                f"/api/v1/assignments/{assignment.id}/capture-config/",
                {"use_llm": True},
                format="json",
            )

        assert response.status_code == 200
        data = response.json()
        assert data["extraction_method"] == "llm"
        assert data["capture_config"]["column_mappings"][0]["json_field"] == "name"
        assert mock_generate.call_args.kwargs["url"] is None
        assert Assignment.objects.get(pk=assignment.pk).extraction_method == "llm"

    def test_analyzer_failure_is_bad_gateway(self, authenticated_client, assignment):
        from syncengine.extraction.llm_capture import CaptureServiceError

        with patch(
            "syncengine.extraction.llm_capture.generate_capture_config",
            side_effect=CaptureServiceError("Analyzer timeout after 120s"),
        ):
            response = authenticated_client.post(
                f"/api/v1/assignments/{assignment.id}/capture-config/", {}, format="json"
            )

        assert response.status_code == 502
        assert "timeout" in response.json()["error"]

    def test_missing_table_is_bad_request(self, authenticated_client, assignment):
        response = authenticated_client.post(
            f"/api/v1/assignments/{assignment.id}/capture-config/", {}, format="json"
        )

        assert response.status_code == 400

    def test_unknown_assignment(self, authenticated_client, db):
        response = authenticated_client.post(
            f"/api/v1/assignments/{uuid.uuid4()}/capture-config/", {}, format="json"
        )

        assert response.status_code == 404


@pytest.mark.django_db
class TestDataSourceTables:
    def test_lists_tables_with_columns(self, authenticated_client, data_source, products_table):
        response = authenticated_client.get(f"/api/v1/data-sources/{data_source.id}/tables/")

        assert response.status_code == 200
        tables = {t["name"]: t for t in response.json()["tables"]}
        columns = {c["name"]: c for c in tables["products"]["columns"]}
        assert set(columns) == {"id", "title", "price", "url"}
        assert columns["id"]["is_primary_key"] is True
        assert columns["title"]["nullable"] is False

    def test_inactive_data_source(self, authenticated_client, data_source):
        data_source.is_active = False
        data_source.save()

        response = authenticated_client.get(f"/api/v1/data-sources/{data_source.id}/tables/")

        assert response.status_code == 400
        assert "inactive" in response.json()["error"]

    def test_requires_auth(self, api_client, data_source):
        response = api_client.get(f"/api/v1/data-sources/{data_source.id}/tables/")

        assert response.status_code == 403
