"""Admin configuration for release models."""

from django.contrib import admin
from django.db import models as db_models
from django_json_widget.widgets import JSONEditorWidget
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.releases.approval import ApprovalGate
from apps.releases.errors import ApprovalNotAllowed, CycleStateError, ReleaseAbortError
from apps.releases.models import CycleStatus, RegressionCycle, RegressionSlot, Release, ReleasePhase
from apps.releases.regression import RegressionCycleManager
from apps.releases.services import abort_release


class RegressionSlotInline(admin.TabularInline):
    """Inline editing of regression slots within a release."""

    model = RegressionSlot
    extra = 0
    fields = ["scheduled_date", "offset_days", "scheduled_time", "consumed_at"]
    readonly_fields = ["consumed_at"]


class RegressionCycleInline(admin.TabularInline):
    """Inline display of regression cycles within a release."""

    model = RegressionCycle
    extra = 0
    fields = ["number", "status", "tag", "slot", "started_at", "completed_at"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Release)
class ReleaseAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for Release model."""

    list_display = [
        "version",
        "tenant_id",
        "phase",
        "platforms",
        "manual_build_upload",
        "kickoff_at",
        "target_release_at",
        "is_aborted",
        "is_archived",
    ]
    list_filter = ["phase", "manual_build_upload", "is_archived"]
    search_fields = ["version", "name", "tenant_id", "branch", "release_tag"]
    readonly_fields = ["id", "phase", "release_tag", "aborted_at", "created_at", "updated_at"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    inlines = [RegressionSlotInline, RegressionCycleInline]
    change_actions = ["approve_regression", "abort"]

    fieldsets = [
        (
            "Identification",
            {"fields": ["id", "tenant_id", "name", "version", "phase"]},
        ),
        (
            "Source control",
            {"fields": ["branch", "base_branch", "release_tag"]},
        ),
        (
            "Targets",
            {"fields": ["platforms", "manual_build_upload", "config"]},
        ),
        (
            "Schedule",
            {"fields": ["kickoff_at", "target_release_at", "aborted_at", "is_archived"]},
        ),
        (
            "Timestamps",
            {"fields": ["created_at", "updated_at"], "classes": ["collapse"]},
        ),
    ]

    @admin.display(boolean=True, description="Aborted")
    def is_aborted(self, obj):
        return obj.is_aborted

    def get_change_actions(self, request, object_id, form_url):
        actions = list(super().get_change_actions(request, object_id, form_url))
        obj = self.model.objects.filter(pk=object_id).first()
        if obj is None:
            return actions
        if obj.phase != ReleasePhase.REGRESSION:
            actions = [a for a in actions if a != "approve_regression"]
        if obj.phase != ReleasePhase.KICKOFF or obj.is_aborted:
            actions = [a for a in actions if a != "abort"]
        return actions

    @object_action(label="Approve Regression", description="Advance to post-regression")
    def approve_regression(self, request, obj):
        try:
            ApprovalGate().approve(obj)
        except ApprovalNotAllowed as e:
            self.message_user(request, f"Cannot approve: {e}", level="warning")
            return
        self.message_user(request, f"Release '{obj.version}' approved for post-regression.")

    @object_action(label="Abort", description="Abort this release before kickoff")
    def abort(self, request, obj):
        try:
            abort_release(obj)
        except ReleaseAbortError as e:
            self.message_user(request, str(e), level="warning")
            return
        self.message_user(request, f"Release '{obj.version}' aborted.")


@admin.register(RegressionCycle)
class RegressionCycleAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for RegressionCycle model."""

    list_display = ["release", "number", "status", "tag", "created_at", "completed_at"]
    list_filter = ["status"]
    search_fields = ["release__version", "tag"]
    readonly_fields = [
        "release",
        "slot",
        "number",
        "status",
        "tag",
        "created_at",
        "started_at",
        "completed_at",
    ]
    change_actions = ["abandon"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("release")

    @object_action(label="Abandon", description="Abandon this regression cycle")
    def abandon(self, request, obj):
        if obj.status not in (CycleStatus.NOT_STARTED, CycleStatus.IN_PROGRESS):
            self.message_user(
                request,
                f"Can only abandon open cycles (current: {obj.status}).",
                level="warning",
            )
            return
        try:
            RegressionCycleManager().abandon_cycle(obj)
        except CycleStateError as e:
            self.message_user(request, str(e), level="warning")
            return
        self.message_user(request, f"Cycle {obj.number} abandoned.")
