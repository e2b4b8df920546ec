"""
Django models for the SyncEngine extraction service.

Models: DataSource, WebSource, Assignment, ExtractionRule, ExtractionJob,
        ProcessLog, AssignmentLease, AssignmentSchedule

An Assignment pairs a WebSource with a target table on a DataSource; its
rules turn each repeating element of the site into one row. Jobs stage
extracted rows until they are committed to the target table.
"""

import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from syncengine.exceptions import (
    AssignmentBusy,
    ConfigurationError,
    ImmutableRecordError,
    InvalidStatusTransition,
)


class ScraperType(models.TextChoices):
    """How pages of a web source are fetched."""

    HTTP = "http", "HTTP"
    BROWSER = "browser", "Browser"
    HYBRID = "hybrid", "Hybrid"


class AuthType(models.TextChoices):
    NONE = "none", "None"
    COOKIE = "cookie", "Cookie"
    HEADER = "header", "Header"
    BASIC = "basic", "Basic"


class PaginationType(models.TextChoices):
    NONE = "none", "None"
    QUERY_PARAM = "query_param", "Query Parameter"
    PATH = "path", "Path Segment"
    NEXT_BUTTON = "next_button", "Next Button"
    INFINITE_SCROLL = "infinite_scroll", "Infinite Scroll"


class DatabaseType(models.TextChoices):
    POSTGRESQL = "postgresql", "PostgreSQL"
    MYSQL = "mysql", "MySQL"
    MSSQL = "mssql", "SQL Server"
    SQLITE = "sqlite", "SQLite"
    ORACLE = "oracle", "Oracle"


class SyncMode(models.TextChoices):
    """Whether staged rows wait for an operator (manual) or commit themselves (auto)."""

    MANUAL = "manual", "Manual"
    AUTO = "auto", "Auto"


class ScheduleType(models.TextChoices):
    MANUAL = "manual", "Manual"
    HOURLY = "hourly", "Hourly"
    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"
    CRON = "cron", "Cron"


class AssignmentStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    TESTING = "testing", "Testing"
    ACTIVE = "active", "Active"
    PAUSED = "paused", "Paused"
    ERROR = "error", "Error"


class ExtractionMethod(models.TextChoices):
    RULES = "rules", "Rules"
    LLM = "llm", "LLM Capture"


class SelectorType(models.TextChoices):
    CSS = "css", "CSS"
    XPATH = "xpath", "XPath"


class TransformType(models.TextChoices):
    NONE = "none", "None"
    TRIM = "trim", "Trim"
    REGEX = "regex", "Regex"
    DATE = "date", "Date"
    NUMBER = "number", "Number"
    JSON = "json", "JSON"
    CUSTOM = "custom", "Custom"


class DataType(models.TextChoices):
    STRING = "string", "String"
    NUMBER = "number", "Number"
    DATE = "date", "Date"
    BOOLEAN = "boolean", "Boolean"
    JSON = "json", "JSON"


class ExtractionJobStatus(models.TextChoices):
    """Status of an extraction job."""

    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    STAGING = "staging", "Staging"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class TriggerSource(models.TextChoices):
    MANUAL = "manual", "Manual"
    AUTO = "auto", "Auto"
    SCHEDULED = "scheduled", "Scheduled"


class LogLevel(models.TextChoices):
    DEBUG = "debug", "Debug"
    INFO = "info", "Info"
    WARN = "warn", "Warning"
    ERROR = "error", "Error"


TERMINAL_JOB_STATUSES = (
    ExtractionJobStatus.COMPLETED,
    ExtractionJobStatus.FAILED,
    ExtractionJobStatus.CANCELLED,
)

ALLOWED_STATUS_TRANSITIONS = {
    AssignmentStatus.DRAFT: {AssignmentStatus.TESTING, AssignmentStatus.ACTIVE},
    AssignmentStatus.TESTING: {AssignmentStatus.ACTIVE, AssignmentStatus.DRAFT},
    AssignmentStatus.ACTIVE: {AssignmentStatus.PAUSED},
    AssignmentStatus.PAUSED: {AssignmentStatus.ACTIVE},
    AssignmentStatus.ERROR: {AssignmentStatus.DRAFT, AssignmentStatus.TESTING},
}


class DataSource(models.Model):
    """
    A target database.

    Rows are written through the Django database alias named here;
    credentials live in DATABASES, never on this record.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    db_type = models.CharField(
        max_length=20, choices=DatabaseType.choices, default=DatabaseType.POSTGRESQL
    )
    connection_alias = models.CharField(
        max_length=100, default="default", help_text="Key in settings.DATABASES"
    )
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "data_sources"
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.db_type})"


class WebSource(models.Model):
    """
    A website and how to fetch it.

    Managed via Django Admin. ``auth_config`` holds a reference the secrets
    resolver turns into cookies/headers/credentials at run time.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    base_url = models.URLField(max_length=2000)

    scraper_type = models.CharField(
        max_length=20, choices=ScraperType.choices, default=ScraperType.HTTP
    )
    auth_type = models.CharField(max_length=20, choices=AuthType.choices, default=AuthType.NONE)
    auth_config = models.JSONField(default=dict, blank=True)

    # Pacing
    request_delay_ms = models.PositiveIntegerField(
        default=1000, help_text="Minimum milliseconds between request starts"
    )
    max_concurrent = models.PositiveIntegerField(
        default=1, help_text="Maximum requests in flight to this source"
    )

    # Pagination
    pagination_type = models.CharField(
        max_length=20, choices=PaginationType.choices, default=PaginationType.NONE
    )
    pagination_config = models.JSONField(default=dict, blank=True)

    # Cached structure analysis
    structure_json = models.JSONField(null=True, blank=True)
    last_analyzed_at = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "web_sources"
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.base_url})"

    def clean(self):
        from syncengine.extraction.pagination import PaginationConfig

        try:
            PaginationConfig.from_dict(self.pagination_type, self.pagination_config)
        except ConfigurationError as e:
            raise ValidationError({"pagination_config": str(e)})
        if self.pagination_type == PaginationType.INFINITE_SCROLL and (
            self.scraper_type == ScraperType.HTTP
        ):
            raise ValidationError(
                {"pagination_type": "Infinite scroll requires a browser or hybrid source"}
            )

    def invalidate_structure(self):
        self.structure_json = None
        self.last_analyzed_at = None
        self.save(update_fields=["structure_json", "last_analyzed_at", "updated_at"])


class Assignment(models.Model):
    """Pairs a web source with a target table and says how and when to sync."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    data_source = models.ForeignKey(
        DataSource, on_delete=models.CASCADE, related_name="assignments"
    )
    web_source = models.ForeignKey(
        WebSource, on_delete=models.CASCADE, related_name="assignments"
    )
    target_schema = models.CharField(max_length=100, blank=True)
    target_table = models.CharField(max_length=200)

    sync_mode = models.CharField(max_length=10, choices=SyncMode.choices, default=SyncMode.MANUAL)
    schedule_type = models.CharField(
        max_length=10, choices=ScheduleType.choices, default=ScheduleType.MANUAL
    )
    cron_expression = models.CharField(max_length=100, blank=True)

    status = models.CharField(
        max_length=10, choices=AssignmentStatus.choices, default=AssignmentStatus.DRAFT
    )

    start_url = models.URLField(
        max_length=2000, blank=True, help_text="Defaults to the web source base URL"
    )
    item_selector = models.CharField(
        max_length=500, blank=True, help_text="CSS selector of the repeating element"
    )
    extraction_method = models.CharField(
        max_length=10, choices=ExtractionMethod.choices, default=ExtractionMethod.RULES
    )
    llm_capture_config = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "updated_at" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["updated_at"]
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        try:
            return super().delete(*args, **kwargs)
        except models.ProtectedError:
            raise AssignmentBusy(f"Assignment {self.name} has a job in flight")

    class Meta:
        db_table = "assignments"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "sync_mode"], name="assignments_status_0e9c8d_idx"),
        ]

    def __str__(self):
        return f"{self.name} -> {self.qualified_table} ({self.status})"

    @property
    def qualified_table(self) -> str:
        if self.target_schema:
            return f"{self.target_schema}.{self.target_table}"
        return self.target_table

    def get_start_url(self) -> str:
        return self.start_url or self.web_source.base_url

    def is_recurring(self) -> bool:
        """Whether the scheduler should keep a recurring trigger for it."""
        return (
            self.status == AssignmentStatus.ACTIVE
            and self.sync_mode == SyncMode.AUTO
            and self.schedule_type != ScheduleType.MANUAL
        )

    def can_transition_to(self, new_status: str) -> bool:
        if new_status == self.status:
            return True
        if new_status == AssignmentStatus.ERROR:
            return True
        return new_status in ALLOWED_STATUS_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: str):
        """Change status, enforcing the allowed transitions."""
        if new_status not in AssignmentStatus.values:
            raise InvalidStatusTransition(f"Unknown status '{new_status}'")
        if not self.can_transition_to(new_status):
            raise InvalidStatusTransition(
                f"Cannot move assignment from '{self.status}' to '{new_status}'"
            )
        if new_status != self.status:
            self.status = new_status
            self.save(update_fields=["status"])

    def clean(self):
        if self.schedule_type == ScheduleType.CRON:
            from syncengine.scheduling import validate_cron_expression

            try:
                validate_cron_expression(self.cron_expression)
            except ConfigurationError as e:
                raise ValidationError({"cron_expression": str(e)})
        if self.extraction_method == ExtractionMethod.LLM and not self.llm_capture_config:
            raise ValidationError(
                {"llm_capture_config": "LLM extraction requires a capture configuration"}
            )


class ExtractionRule(models.Model):
    """How one target column is read from one repeating element."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    assignment = models.ForeignKey(
        Assignment, on_delete=models.CASCADE, related_name="rules"
    )
    target_column = models.CharField(max_length=200)

    selector = models.CharField(max_length=1000, blank=True)
    selector_type = models.CharField(
        max_length=10, choices=SelectorType.choices, default=SelectorType.CSS
    )
    attribute = models.CharField(
        max_length=100, default="text", help_text="text, html, href, src or an attribute name"
    )

    transform_type = models.CharField(
        max_length=10, choices=TransformType.choices, default=TransformType.NONE
    )
    transform_config = models.JSONField(default=dict, blank=True)

    default_value = models.TextField(blank=True)
    data_type = models.CharField(max_length=10, choices=DataType.choices, default=DataType.STRING)
    is_required = models.BooleanField(default=False)
    validation_regex = models.CharField(max_length=500, blank=True)

    sort_order = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        super().save(*args, **kwargs)

    class Meta:
        db_table = "extraction_rules"
        ordering = ["sort_order", "target_column"]
        constraints = [
            models.UniqueConstraint(
                fields=["assignment", "target_column"],
                condition=models.Q(is_active=True),
                name="unique_active_rule_per_column",
            ),
        ]

    def __str__(self):
        return f"{self.target_column} <- {self.selector}"

    def clean(self):
        from syncengine.extraction.rules import RuleSpec

        try:
            RuleSpec.from_model(self)
        except ConfigurationError as e:
            raise ValidationError(str(e))


class ExtractionJob(models.Model):
    """
    One run of an assignment.

    Created pending while holding the assignment lease; staged rows live
    on the job (inline) or in a staging file until commit.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    assignment = models.ForeignKey(
        Assignment, on_delete=models.CASCADE, related_name="jobs"
    )

    status = models.CharField(
        max_length=20,
        choices=ExtractionJobStatus.choices,
        default=ExtractionJobStatus.PENDING,
    )
    trigger_source = models.CharField(
        max_length=20, choices=TriggerSource.choices, default=TriggerSource.MANUAL
    )
    sync_mode = models.CharField(max_length=10, choices=SyncMode.choices, default=SyncMode.MANUAL)

    # Timing
    created_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    committed_at = models.DateTimeField(null=True, blank=True)

    # Progress
    pages_processed = models.IntegerField(default=0)
    pages_total = models.IntegerField(null=True, blank=True)
    rows_extracted = models.IntegerField(default=0)
    rows_inserted = models.IntegerField(default=0)
    rows_failed = models.IntegerField(default=0)
    current_url = models.URLField(max_length=2000, blank=True)

    # Staged payload
    staged_data_json = models.JSONField(null=True, blank=True)
    staged_data_path = models.CharField(max_length=500, blank=True)
    staged_columns = models.JSONField(default=list, blank=True)
    staged_row_count = models.IntegerField(default=0)

    # Errors
    error_message = models.TextField(blank=True)
    error_details = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "extraction_jobs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="extraction__status_5b1f2a_idx"),
            models.Index(fields=["assignment", "created_at"], name="extraction__assignm_8c4e71_idx"),
        ]

    def __str__(self):
        return f"Job {self.id} - {self.assignment.name} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    @property
    def has_staged_data(self) -> bool:
        return self.staged_data_json is not None or bool(self.staged_data_path)

    @property
    def duration_seconds(self):
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def progress_percent(self):
        if self.status in (ExtractionJobStatus.STAGING, ExtractionJobStatus.COMPLETED):
            return 100
        if not self.pages_total:
            return None
        return min(int(self.pages_processed * 100 / self.pages_total), 99)


class ProcessLog(models.Model):
    """Append-only diagnostic entry for a job."""

    id = models.BigAutoField(primary_key=True)
    job = models.ForeignKey(ExtractionJob, on_delete=models.CASCADE, related_name="logs")
    level = models.CharField(max_length=10, choices=LogLevel.choices, default=LogLevel.INFO)
    message = models.TextField()
    details = models.JSONField(null=True, blank=True)
    url = models.URLField(max_length=2000, blank=True)
    row_index = models.IntegerField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "process_logs"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["job", "created_at"], name="process_log_job_id_3a7d90_idx"),
            models.Index(fields=["job", "level"], name="process_log_job_id_e21b6c_idx"),
        ]

    def __str__(self):
        return f"[{self.level}] {self.message[:80]}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError("Process log entries cannot be modified")
        super().save(*args, **kwargs)


class AssignmentLease(models.Model):
    """
    Per-assignment single-flight mutex.

    The primary key is the assignment, so a second concurrent insert fails
    with IntegrityError. Held from job creation until the job is terminal.
    Both links are PROTECT: neither the assignment nor the job can be
    deleted, directly, in bulk or by cascade, while the lease exists.
    """

    assignment = models.OneToOneField(
        Assignment, on_delete=models.PROTECT, primary_key=True, related_name="lease"
    )
    job = models.OneToOneField(ExtractionJob, on_delete=models.PROTECT, related_name="lease")
    acquired_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "assignment_leases"

    def __str__(self):
        return f"Lease {self.assignment_id} -> {self.job_id}"


class AssignmentSchedule(models.Model):
    """Persistent recurring trigger for an assignment."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    assignment = models.OneToOneField(
        Assignment, on_delete=models.CASCADE, related_name="schedule"
    )
    schedule_type = models.CharField(max_length=10, choices=ScheduleType.choices)
    cron_expression = models.CharField(max_length=100, blank=True)

    next_run_at = models.DateTimeField(help_text="When the next run should fire")
    last_run_at = models.DateTimeField(null=True, blank=True)
    last_status = models.CharField(max_length=20, blank=True)
    last_job_id = models.UUIDField(null=True, blank=True)

    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "assignment_schedules"
        ordering = ["next_run_at"]
        indexes = [
            models.Index(fields=["next_run_at", "is_active"], name="assignment__next_ru_4f0c2e_idx"),
        ]

    def __str__(self):
        return f"Schedule for {self.assignment_id} - Next: {self.next_run_at}"
