"""
Tests for job monitoring.

- Sentry capture and breadcrumbs with sensitive data filtered
- Structured job events and the process log they write
- Per-job logger and cooperative cancellation
"""

import pytest
from unittest.mock import MagicMock, patch


class TestFilterSensitiveData:
    def test_filters_nested_auth_values(self):
        from syncengine.monitoring import filter_sensitive_data

        data = {
            "url": "https://shop.example.com",
            "Authorization": "Bearer abc",
            "auth": {"cookies": {"session": "xyz"}},
            "request": {"x-api-key": "k", "page": 2},
        }

        filtered = filter_sensitive_data(data)

        assert filtered["url"] == "https://shop.example.com"
        assert filtered["Authorization"] == "[Filtered]"
        assert filtered["auth"] == "[Filtered]"
        assert filtered["request"] == {"x-api-key": "[Filtered]", "page": 2}

    def test_non_dict_passes_through(self):
        from syncengine.monitoring import filter_sensitive_data

        assert filter_sensitive_data(["a"]) == ["a"]


class TestSentryCapture:
    """Test Sentry error capture with job context."""

    def test_capture_job_error_sets_tags(self):
        from syncengine.monitoring import capture_job_error

        job = MagicMock(id="job-1", assignment_id="assignment-1", trigger_source="scheduled")
        scope = MagicMock()
        error = ValueError("parser exploded")

        with patch("syncengine.monitoring.sentry_integration.sentry_sdk") as mock_sentry:
            mock_sentry.new_scope.return_value.__enter__.return_value = scope
            capture_job_error(
                error,
                job=job,
                url="https://shop.example.com/products?page=3",
                extra_context={"token": "secret", "page": 3},
            )

        scope.set_tag.assert_any_call("syncengine.job", "job-1")
        scope.set_tag.assert_any_call("syncengine.assignment", "assignment-1")
        scope.set_extra.assert_any_call("page_url", "https://shop.example.com/products?page=3")
        scope.set_extra.assert_any_call("job_context", {"token": "[Filtered]", "page": 3})
        mock_sentry.capture_exception.assert_called_once_with(error)

    def test_fetch_breadcrumb_level(self):
        from syncengine.monitoring import add_fetch_breadcrumb

        with patch("syncengine.monitoring.sentry_integration.sentry_sdk") as mock_sentry:
            add_fetch_breadcrumb("https://shop.example.com", "http", 200)
            add_fetch_breadcrumb("https://shop.example.com", "browser", 0, error="timeout")

        levels = [c.kwargs["level"] for c in mock_sentry.add_breadcrumb.call_args_list]
        assert levels == ["info", "error"]

    def test_job_breadcrumb_filters_data(self):
        from syncengine.monitoring import add_job_breadcrumb

        with patch("syncengine.monitoring.sentry_integration.sentry_sdk") as mock_sentry:
            add_job_breadcrumb("job-1", "failed", {"password": "hunter2", "status": "failed"})

        kwargs = mock_sentry.add_breadcrumb.call_args.kwargs
        assert kwargs["category"] == "job"
        assert kwargs["data"] == {"password": "[Filtered]", "status": "failed"}


@pytest.mark.django_db
class TestJobEvents:
    def test_event_writes_process_log(self, make_job):
        from syncengine.models import ProcessLog
        from syncengine.monitoring import emit_job_event

        job = make_job("running")

        emit_job_event(job, "started")

        entry = ProcessLog.objects.get(job=job)
        assert entry.message == "Job started"
        assert entry.level == "info"
        assert entry.details == {"status": "running"}

    def test_failed_event_is_an_error_entry(self, make_job):
        from syncengine.models import ProcessLog
        from syncengine.monitoring import emit_job_event

        job = make_job("failed")

        emit_job_event(job, "failed", error="Worker lost", url=None)

        entry = ProcessLog.objects.get(job=job)
        assert entry.level == "error"
        assert entry.details == {"status": "failed", "error": "Worker lost"}

    def test_event_is_logged(self, make_job, caplog):
        import logging

        from syncengine.monitoring import emit_job_event

        job = make_job("pending")

        with caplog.at_level(logging.INFO, logger="syncengine.events"):
            emit_job_event(job, "created")

        assert f"job={job.id}" in caplog.text
        assert "event=created" in caplog.text


@pytest.mark.django_db
class TestJobLogger:
    def test_writes_entries(self, make_job):
        from syncengine.jobs.job_logger import JobLogger
        from syncengine.models import ProcessLog

        job = make_job("running")

        JobLogger(job.id).warn("Row skipped", url="https://shop.example.com", row_index=3)

        entry = ProcessLog.objects.get(job=job)
        assert entry.level == "warn"
        assert entry.row_index == 3

    def test_unknown_level_becomes_info(self, make_job):
        from syncengine.jobs.job_logger import JobLogger

        job = make_job("running")

        assert JobLogger(job.id).log("critical", "Odd level").level == "info"

    def test_row_entries_are_capped(self, make_job):
        """Row warnings past the cap are summarised in a single entry."""
        from syncengine.jobs import job_logger as job_logger_module
        from syncengine.jobs.job_logger import JobLogger
        from syncengine.models import ProcessLog

        job = make_job("running")
        job_logger = JobLogger(job.id)

        with patch.object(job_logger_module, "MAX_ROW_ENTRIES", 2):
            for index in range(5):
                job_logger.warn("Row skipped", row_index=index)
            job_logger.flush_suppressed()

        messages = list(ProcessLog.objects.filter(job=job).values_list("message", flat=True))
        assert messages == [
            "Row skipped",
            "Row skipped",
            "3 further row failures not logged individually",
        ]

    def test_process_log_is_immutable(self, make_job):
        from syncengine.exceptions import ImmutableRecordError
        from syncengine.jobs.job_logger import JobLogger

        job = make_job("running")
        entry = JobLogger(job.id).info("Started")
        entry.message = "Edited"

        with pytest.raises(ImmutableRecordError):
            entry.save()


@pytest.mark.django_db
class TestCancellationToken:
    def test_running_job_passes(self, make_job):
        from syncengine.jobs.cancellation import CancellationToken

        job = make_job("running")
        token = CancellationToken(job.id, poll_interval=0)

        token.check()

        assert token.cancelled is False

    def test_cancelled_job_raises(self, make_job):
        from syncengine.exceptions import JobCancelled
        from syncengine.jobs.cancellation import CancellationToken
        from syncengine.models import ExtractionJob

        job = make_job("running")
        token = CancellationToken(job.id, poll_interval=0)
        ExtractionJob.objects.filter(pk=job.id).update(status="cancelled")

        with pytest.raises(JobCancelled):
            token.check()
        with pytest.raises(JobCancelled):
            token.check()
        assert token.cancelled is True

    def test_polls_at_most_once_per_interval(self, make_job, django_assert_num_queries):
        from syncengine.jobs.cancellation import CancellationToken

        job = make_job("running")
        token = CancellationToken(job.id, poll_interval=60)

        with django_assert_num_queries(1):
            token.check()
            token.check()
            token.check()
