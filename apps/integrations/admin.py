"""Admin configuration for integration models."""

from django.contrib import admin
from django.db import models as db_models
from django_json_widget.widgets import JSONEditorWidget

from apps.integrations.models import TenantIntegration


@admin.register(TenantIntegration)
class TenantIntegrationAdmin(admin.ModelAdmin):
    """Admin for TenantIntegration model."""

    list_display = ["tenant_id", "kind", "provider", "name", "is_active", "updated_at"]
    list_filter = ["kind", "provider", "is_active"]
    search_fields = ["tenant_id", "name", "provider"]
    readonly_fields = ["created_at", "updated_at"]
    formfield_overrides = {db_models.JSONField: {"widget": JSONEditorWidget}}
    fieldsets = [
        (
            None,
            {
                "fields": ["tenant_id", "kind", "provider", "name", "is_active"],
            },
        ),
        (
            "Configuration",
            {
                "fields": ["config"],
                "classes": ["collapse"],
            },
        ),
        (
            "Timestamps",
            {
                "fields": ["created_at", "updated_at"],
            },
        ),
    ]
