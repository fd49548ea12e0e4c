"""Admin configuration for build upload models."""

from django.contrib import admin

from apps.builds.models import BuildUpload


@admin.register(BuildUpload)
class BuildUploadAdmin(admin.ModelAdmin):
    """Admin for BuildUpload model. Consumed uploads are read-only."""

    list_display = [
        "release",
        "stage",
        "platform",
        "artifact_path",
        "testflight_number",
        "is_used",
        "used_at",
        "created_at",
    ]
    list_filter = ["stage", "platform", "is_used"]
    search_fields = ["release__version", "artifact_path", "testflight_number"]
    readonly_fields = [
        "is_used",
        "used_by_task",
        "used_by_cycle",
        "used_at",
        "created_at",
        "updated_at",
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("release")

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.is_used:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.is_used:
            return False
        return super().has_delete_permission(request, obj)
