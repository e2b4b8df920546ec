"""
Django admin configuration for the extraction engine.

Provides management of data sources, web sources, assignments and their
rules, plus read-only views of jobs, process logs and schedules.
"""

from django.contrib import admin
from django.utils.html import format_html

from syncengine.exceptions import (
    AlreadyRunning,
    AssignmentBusy,
    ConfigurationError,
    InvalidJobState,
)
from syncengine.models import (
    Assignment,
    AssignmentLease,
    AssignmentSchedule,
    DataSource,
    ExtractionJob,
    ExtractionRule,
    ProcessLog,
    WebSource,
)

STATUS_COLORS = {
    "pending": "#ffc107",
    "running": "#007bff",
    "staging": "#17a2b8",
    "completed": "#28a745",
    "failed": "#dc3545",
    "cancelled": "#6c757d",
    "draft": "#6c757d",
    "testing": "#ffc107",
    "active": "#28a745",
    "paused": "#6c757d",
    "error": "#dc3545",
}


def _badge(status: str):
    return format_html(
        '<span style="background-color: {}; color: white; '
        'padding: 2px 8px; border-radius: 4px;">{}</span>',
        STATUS_COLORS.get(status, "#6c757d"),
        status.title(),
    )


@admin.register(DataSource)
class DataSourceAdmin(admin.ModelAdmin):
    list_display = ["name", "db_type", "connection_alias", "is_active", "updated_at"]
    list_filter = ["db_type", "is_active"]
    search_fields = ["name", "connection_alias"]
    readonly_fields = ["id", "created_at", "updated_at"]


@admin.register(WebSource)
class WebSourceAdmin(admin.ModelAdmin):
    """Web sources with fetch, auth and pagination settings."""

    list_display = [
        "name",
        "base_url",
        "scraper_type",
        "pagination_type",
        "is_active",
        "last_analyzed_at",
    ]
    list_filter = ["scraper_type", "auth_type", "pagination_type", "is_active"]
    search_fields = ["name", "base_url"]
    readonly_fields = ["id", "structure_json", "last_analyzed_at", "created_at", "updated_at"]

    fieldsets = (
        ("Identity", {
            "fields": ("id", "name", "base_url", "is_active"),
        }),
        ("Fetching", {
            "fields": ("scraper_type", "request_delay_ms", "max_concurrent"),
        }),
        ("Authentication", {
            "fields": ("auth_type", "auth_config"),
            "classes": ("collapse",),
        }),
        ("Pagination", {
            "fields": ("pagination_type", "pagination_config"),
        }),
        ("Analysis", {
            "fields": ("structure_json", "last_analyzed_at"),
            "classes": ("collapse",),
        }),
        ("Metadata", {
            "fields": ("created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    actions = ["analyze_sources"]

    @admin.action(description="Analyze structure")
    def analyze_sources(self, request, queryset):
        from syncengine.tasks import analyze_web_source

        count = 0
        for web_source in queryset.filter(is_active=True):
            analyze_web_source.apply_async(args=[str(web_source.id)], queue="analysis")
            count += 1
        self.message_user(request, f"Queued analysis for {count} web source(s).")


class ExtractionRuleInline(admin.TabularInline):
    model = ExtractionRule
    extra = 0
    fields = [
        "target_column",
        "selector",
        "selector_type",
        "attribute",
        "transform_type",
        "transform_config",
        "data_type",
        "is_required",
        "default_value",
        "validation_regex",
        "sort_order",
        "is_active",
    ]


@admin.register(Assignment)
class AssignmentAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "web_source",
        "target_table",
        "status_badge",
        "sync_mode",
        "schedule_type",
        "extraction_method",
    ]
    list_filter = ["status", "sync_mode", "schedule_type", "extraction_method"]
    search_fields = ["name", "target_table", "web_source__name"]
    readonly_fields = ["id", "created_at", "updated_at"]
    inlines = [ExtractionRuleInline]

    fieldsets = (
        ("Identity", {
            "fields": ("id", "name", "description", "status"),
        }),
        ("Source and Target", {
            "fields": (
                "web_source",
                "start_url",
                "data_source",
                "target_schema",
                "target_table",
            ),
        }),
        ("Sync", {
            "fields": ("sync_mode", "schedule_type", "cron_expression"),
        }),
        ("Extraction", {
            "fields": ("extraction_method", "item_selector", "llm_capture_config"),
        }),
        ("Metadata", {
            "fields": ("created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    actions = ["run_now"]

    def status_badge(self, obj):
        return _badge(obj.status)
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    @admin.action(description="Run extraction now")
    def run_now(self, request, queryset):
        from syncengine.scheduling import Scheduler

        scheduler = Scheduler()
        started = 0
        for assignment in queryset:
            try:
                scheduler.trigger_now(assignment.pk)
                started += 1
            except (AlreadyRunning, ConfigurationError) as e:
                self.message_user(request, f"{assignment.name}: {e}", level="warning")
        self.message_user(request, f"Started {started} job(s).")

    def delete_model(self, request, obj):
        try:
            obj.delete()
        except AssignmentBusy as e:
            self.message_user(request, str(e), level="error")

    def delete_queryset(self, request, queryset):
        for assignment in queryset:
            self.delete_model(request, assignment)


@admin.register(ExtractionJob)
class ExtractionJobAdmin(admin.ModelAdmin):
    """Read-only view of extraction jobs, with cancel and commit actions."""

    list_display = [
        "id_short",
        "assignment",
        "status_badge",
        "trigger_source",
        "started_at",
        "pages_processed",
        "rows_extracted",
        "rows_inserted",
        "rows_failed",
        "duration_display",
    ]
    list_filter = [
        "status",
        "trigger_source",
        ("created_at", admin.DateFieldListFilter),
    ]
    search_fields = ["assignment__name", "id"]
    ordering = ["-created_at"]
    exclude = ["staged_data_json"]

    actions = ["cancel_jobs", "commit_jobs"]

    def get_readonly_fields(self, request, obj=None):
        return [f.name for f in self.model._meta.fields if f.name != "staged_data_json"]

    def id_short(self, obj):
        return str(obj.id)[:8]
    id_short.short_description = "Job ID"

    def status_badge(self, obj):
        return _badge(obj.status)
    status_badge.short_description = "Status"
    status_badge.admin_order_field = "status"

    def duration_display(self, obj):
        if obj.duration_seconds:
            seconds = obj.duration_seconds
            if seconds < 60:
                return f"{seconds:.1f}s"
            elif seconds < 3600:
                return f"{seconds / 60:.1f}m"
            else:
                return f"{seconds / 3600:.1f}h"
        return "-"
    duration_display.short_description = "Duration"

    @admin.action(description="Cancel selected jobs")
    def cancel_jobs(self, request, queryset):
        from syncengine.jobs.lifecycle import JobStateMachine

        machine = JobStateMachine()
        count = 0
        for job in queryset:
            try:
                machine.cancel(job.id)
                count += 1
            except InvalidJobState:
                continue
        self.message_user(request, f"Cancelled {count} job(s).")

    @admin.action(description="Commit selected staged jobs")
    def commit_jobs(self, request, queryset):
        from syncengine.tasks import commit_extraction_job

        count = 0
        for job in queryset.filter(status="staging", committed_at__isnull=True):
            commit_extraction_job.apply_async(args=[str(job.id)], queue="commit")
            count += 1
        self.message_user(request, f"Queued commit for {count} job(s).")

    def has_add_permission(self, request):
        return False


@admin.register(ProcessLog)
class ProcessLogAdmin(admin.ModelAdmin):
    list_display = ["created_at", "job", "level", "message_short", "row_index"]
    list_filter = ["level", ("created_at", admin.DateFieldListFilter)]
    search_fields = ["message", "url", "job__id"]
    readonly_fields = ["job", "level", "message", "details", "url", "row_index", "created_at"]

    def message_short(self, obj):
        return obj.message[:100]
    message_short.short_description = "Message"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(AssignmentSchedule)
class AssignmentScheduleAdmin(admin.ModelAdmin):
    list_display = [
        "assignment",
        "schedule_type",
        "cron_expression",
        "next_run_at",
        "last_run_at",
        "last_status",
        "is_active",
    ]
    list_filter = ["schedule_type", "is_active"]
    readonly_fields = ["last_run_at", "last_status", "last_job_id"]


@admin.register(AssignmentLease)
class AssignmentLeaseAdmin(admin.ModelAdmin):
    list_display = ["assignment", "job", "acquired_at"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
