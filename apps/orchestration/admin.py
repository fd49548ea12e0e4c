"""Admin configuration for orchestration models."""

from django.contrib import admin
from django.db import models as db_models
from django.utils.html import format_html
from django_json_widget.widgets import JSONEditorWidget
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.orchestration.errors import TaskRetryError
from apps.orchestration.models import CronLock, Task, TaskConclusion, TaskStatus
from apps.orchestration.sequencer import TaskSequencer

STATUS_COLORS = {
    TaskStatus.PENDING: "#999",
    TaskStatus.IN_PROGRESS: "#ffc107",
    TaskStatus.AWAITING_CALLBACK: "#17a2b8",
    TaskStatus.COMPLETED: "#28a745",
    TaskStatus.FAILED: "#dc3545",
}


@admin.register(Task)
class TaskAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for orchestration Task model."""

    list_display = [
        "task_type",
        "platform",
        "release",
        "stage",
        "cycle",
        "status_badge",
        "conclusion",
        "attempt",
        "updated_at",
    ]
    list_filter = ["stage", "status", "conclusion", "task_type", "platform"]
    search_fields = ["release__version", "release__tenant_id", "external_id", "identity_key"]
    readonly_fields = [
        "identity_key",
        "depends_on",
        "attempt",
        "created_at",
        "updated_at",
        "started_at",
        "completed_at",
    ]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    actions = ["retry_selected"]
    change_actions = ["retry_task"]

    fieldsets = [
        (
            "Identification",
            {"fields": ["release", "cycle", "stage", "task_type", "platform", "identity_key"]},
        ),
        (
            "State",
            {"fields": ["status", "conclusion", "attempt", "depends_on"]},
        ),
        (
            "External",
            {"fields": ["external_id", "external_data"], "classes": ["collapse"]},
        ),
        (
            "Timestamps",
            {"fields": ["created_at", "updated_at", "started_at", "completed_at"]},
        ),
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("release", "cycle")

    @admin.display(description="Status", ordering="status")
    def status_badge(self, obj):
        label = obj.status
        if obj.status == TaskStatus.COMPLETED and obj.conclusion == TaskConclusion.FAILURE:
            label, color = "COMPLETED (failure)", STATUS_COLORS[TaskStatus.FAILED]
        else:
            color = STATUS_COLORS.get(obj.status, "#999")
        return format_html('<span style="color:{};font-weight:bold;">{}</span>', color, label)

    @admin.action(description="Retry selected tasks")
    def retry_selected(self, request, queryset):
        sequencer = TaskSequencer()
        count = 0
        for task in queryset.retryable():
            try:
                sequencer.retry(task)
            except TaskRetryError:
                continue
            count += 1
        self.message_user(request, f"{count} task(s) reset to PENDING.")

    @object_action(label="Retry", description="Reset this task to PENDING")
    def retry_task(self, request, obj):
        try:
            TaskSequencer().retry(obj)
        except TaskRetryError as e:
            self.message_user(request, str(e), level="warning")
            return
        self.message_user(request, f"Task '{obj.task_type}' reset to PENDING.")


@admin.register(CronLock)
class CronLockAdmin(admin.ModelAdmin):
    """Admin for release scheduler leases."""

    list_display = ["release_id", "owner_token", "acquired_at", "expires_at", "expired"]
    search_fields = ["release_id", "owner_token"]
    readonly_fields = ["release_id", "owner_token", "acquired_at", "expires_at"]

    @admin.display(boolean=True, description="Expired")
    def expired(self, obj):
        return obj.is_expired()
