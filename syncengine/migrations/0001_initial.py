"""
Initial schema for the extraction engine.
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


SCRAPER_TYPES = [("http", "HTTP"), ("browser", "Browser"), ("hybrid", "Hybrid")]
AUTH_TYPES = [("none", "None"), ("cookie", "Cookie"), ("header", "Header"), ("basic", "Basic")]
PAGINATION_TYPES = [
    ("none", "None"),
    ("query_param", "Query Parameter"),
    ("path", "Path Segment"),
    ("next_button", "Next Button"),
    ("infinite_scroll", "Infinite Scroll"),
]
DATABASE_TYPES = [
    ("postgresql", "PostgreSQL"),
    ("mysql", "MySQL"),
    ("mssql", "SQL Server"),
    ("sqlite", "SQLite"),
    ("oracle", "Oracle"),
]
SYNC_MODES = [("manual", "Manual"), ("auto", "Auto")]
SCHEDULE_TYPES = [
    ("manual", "Manual"),
    ("hourly", "Hourly"),
    ("daily", "Daily"),
    ("weekly", "Weekly"),
    ("cron", "Cron"),
]
ASSIGNMENT_STATUSES = [
    ("draft", "Draft"),
    ("testing", "Testing"),
    ("active", "Active"),
    ("paused", "Paused"),
    ("error", "Error"),
]
EXTRACTION_METHODS = [("rules", "Rules"), ("llm", "LLM Capture")]
SELECTOR_TYPES = [("css", "CSS"), ("xpath", "XPath")]
TRANSFORM_TYPES = [
    ("none", "None"),
    ("trim", "Trim"),
    ("regex", "Regex"),
    ("date", "Date"),
    ("number", "Number"),
    ("json", "JSON"),
    ("custom", "Custom"),
]
DATA_TYPES = [
    ("string", "String"),
    ("number", "Number"),
    ("date", "Date"),
    ("boolean", "Boolean"),
    ("json", "JSON"),
]
JOB_STATUSES = [
    ("pending", "Pending"),
    ("running", "Running"),
    ("staging", "Staging"),
    ("completed", "Completed"),
    ("failed", "Failed"),
    ("cancelled", "Cancelled"),
]
TRIGGER_SOURCES = [("manual", "Manual"), ("auto", "Auto"), ("scheduled", "Scheduled")]
LOG_LEVELS = [("debug", "Debug"), ("info", "Info"), ("warn", "Warning"), ("error", "Error")]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="DataSource",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("name", models.CharField(max_length=100, unique=True)),
                (
                    "db_type",
                    models.CharField(choices=DATABASE_TYPES, default="postgresql", max_length=20),
                ),
                (
                    "connection_alias",
                    models.CharField(
                        default="default", help_text="Key in settings.DATABASES", max_length=100
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "data_sources",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="WebSource",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("name", models.CharField(max_length=100, unique=True)),
                ("base_url", models.URLField(max_length=2000)),
                (
                    "scraper_type",
                    models.CharField(choices=SCRAPER_TYPES, default="http", max_length=20),
                ),
                (
                    "auth_type",
                    models.CharField(choices=AUTH_TYPES, default="none", max_length=20),
                ),
                ("auth_config", models.JSONField(blank=True, default=dict)),
                (
                    "request_delay_ms",
                    models.PositiveIntegerField(
                        default=1000, help_text="Minimum milliseconds between request starts"
                    ),
                ),
                (
                    "max_concurrent",
                    models.PositiveIntegerField(
                        default=1, help_text="Maximum requests in flight to this source"
                    ),
                ),
                (
                    "pagination_type",
                    models.CharField(choices=PAGINATION_TYPES, default="none", max_length=20),
                ),
                ("pagination_config", models.JSONField(blank=True, default=dict)),
                ("structure_json", models.JSONField(blank=True, null=True)),
                ("last_analyzed_at", models.DateTimeField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "web_sources",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Assignment",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("name", models.CharField(max_length=200)),
                ("description", models.TextField(blank=True)),
                ("target_schema", models.CharField(blank=True, max_length=100)),
                ("target_table", models.CharField(max_length=200)),
                (
                    "sync_mode",
                    models.CharField(choices=SYNC_MODES, default="manual", max_length=10),
                ),
                (
                    "schedule_type",
                    models.CharField(choices=SCHEDULE_TYPES, default="manual", max_length=10),
                ),
                ("cron_expression", models.CharField(blank=True, max_length=100)),
                (
                    "status",
                    models.CharField(choices=ASSIGNMENT_STATUSES, default="draft", max_length=10),
                ),
                (
                    "start_url",
                    models.URLField(
                        blank=True,
                        help_text="Defaults to the web source base URL",
                        max_length=2000,
                    ),
                ),
                (
                    "item_selector",
                    models.CharField(
                        blank=True,
                        help_text="CSS selector of the repeating element",
                        max_length=500,
                    ),
                ),
                (
                    "extraction_method",
                    models.CharField(choices=EXTRACTION_METHODS, default="rules", max_length=10),
                ),
                ("llm_capture_config", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "data_source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="assignments",
                        to="syncengine.datasource",
                    ),
                ),
                (
                    "web_source",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="assignments",
                        to="syncengine.websource",
                    ),
                ),
            ],
            options={
                "db_table": "assignments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "sync_mode"], name="assignments_status_0e9c8d_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ExtractionRule",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("target_column", models.CharField(max_length=200)),
                ("selector", models.CharField(blank=True, max_length=1000)),
                (
                    "selector_type",
                    models.CharField(choices=SELECTOR_TYPES, default="css", max_length=10),
                ),
                (
                    "attribute",
                    models.CharField(
                        default="text",
                        help_text="text, html, href, src or an attribute name",
                        max_length=100,
                    ),
                ),
                (
                    "transform_type",
                    models.CharField(choices=TRANSFORM_TYPES, default="none", max_length=10),
                ),
                ("transform_config", models.JSONField(blank=True, default=dict)),
                ("default_value", models.TextField(blank=True)),
                (
                    "data_type",
                    models.CharField(choices=DATA_TYPES, default="string", max_length=10),
                ),
                ("is_required", models.BooleanField(default=False)),
                ("validation_regex", models.CharField(blank=True, max_length=500)),
                ("sort_order", models.IntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "assignment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rules",
                        to="syncengine.assignment",
                    ),
                ),
            ],
            options={
                "db_table": "extraction_rules",
                "ordering": ["sort_order", "target_column"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("assignment", "target_column"),
                        name="unique_active_rule_per_column",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ExtractionJob",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                (
                    "status",
                    models.CharField(choices=JOB_STATUSES, default="pending", max_length=20),
                ),
                (
                    "trigger_source",
                    models.CharField(choices=TRIGGER_SOURCES, default="manual", max_length=20),
                ),
                (
                    "sync_mode",
                    models.CharField(choices=SYNC_MODES, default="manual", max_length=10),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("committed_at", models.DateTimeField(blank=True, null=True)),
                ("pages_processed", models.IntegerField(default=0)),
                ("pages_total", models.IntegerField(blank=True, null=True)),
                ("rows_extracted", models.IntegerField(default=0)),
                ("rows_inserted", models.IntegerField(default=0)),
                ("rows_failed", models.IntegerField(default=0)),
                ("current_url", models.URLField(blank=True, max_length=2000)),
                ("staged_data_json", models.JSONField(blank=True, null=True)),
                ("staged_data_path", models.CharField(blank=True, max_length=500)),
                ("staged_columns", models.JSONField(blank=True, default=list)),
                ("staged_row_count", models.IntegerField(default=0)),
                ("error_message", models.TextField(blank=True)),
                ("error_details", models.JSONField(blank=True, default=dict)),
                (
                    "assignment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="jobs",
                        to="syncengine.assignment",
                    ),
                ),
            ],
            options={
                "db_table": "extraction_jobs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"], name="extraction__status_5b1f2a_idx"
                    ),
                    models.Index(
                        fields=["assignment", "created_at"], name="extraction__assignm_8c4e71_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "level",
                    models.CharField(choices=LOG_LEVELS, default="info", max_length=10),
                ),
                ("message", models.TextField()),
                ("details", models.JSONField(blank=True, null=True)),
                ("url", models.URLField(blank=True, max_length=2000)),
                ("row_index", models.IntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="logs",
                        to="syncengine.extractionjob",
                    ),
                ),
            ],
            options={
                "db_table": "process_logs",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["job", "created_at"], name="process_log_job_id_3a7d90_idx"),
                    models.Index(fields=["job", "level"], name="process_log_job_id_e21b6c_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AssignmentLease",
            fields=[
                (
                    "assignment",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        primary_key=True,
                        related_name="lease",
                        serialize=False,
                        to="syncengine.assignment",
                    ),
                ),
                ("acquired_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "job",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lease",
                        to="syncengine.extractionjob",
                    ),
                ),
            ],
            options={
                "db_table": "assignment_leases",
            },
        ),
        migrations.CreateModel(
            name="AssignmentSchedule",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                (
                    "schedule_type",
                    models.CharField(choices=SCHEDULE_TYPES, max_length=10),
                ),
                ("cron_expression", models.CharField(blank=True, max_length=100)),
                (
                    "next_run_at",
                    models.DateTimeField(help_text="When the next run should fire"),
                ),
                ("last_run_at", models.DateTimeField(blank=True, null=True)),
                ("last_status", models.CharField(blank=True, max_length=20)),
                ("last_job_id", models.UUIDField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "assignment",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="schedule",
                        to="syncengine.assignment",
                    ),
                ),
            ],
            options={
                "db_table": "assignment_schedules",
                "ordering": ["next_run_at"],
                "indexes": [
                    models.Index(
                        fields=["next_run_at", "is_active"], name="assignment__next_ru_4f0c2e_idx"
                    ),
                ],
            },
        ),
    ]
