"""
Integration models.

Stores per-tenant provider configuration for each capability the release
engine consumes.
"""

from django.db import models, transaction
from django.db.models import Q


class IntegrationKind(models.TextChoices):
    """Capabilities the release engine consumes from external systems."""

    SCM = "scm", "Source Control"
    CICD = "cicd", "CI/CD"
    TEST_MANAGEMENT = "test_management", "Test Management"
    PROJECT_MANAGEMENT = "project_management", "Project Management"
    NOTIFICATION = "notification", "Notification"


class TenantIntegration(models.Model):
    """Database-driven provider configuration for a tenant.

    Only one integration per (tenant, kind) can be active at a time.
    The ``provider`` value selects the adapter class registered under
    ``RELEASES_PROVIDER_CLASSES[kind][provider]``.
    """

    tenant_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Tenant (app) identifier this integration belongs to.",
    )
    kind = models.CharField(
        max_length=32,
        choices=IntegrationKind.choices,
        db_index=True,
    )
    provider = models.CharField(
        max_length=50,
        help_text="Adapter name (e.g., 'github', 'slack').",
    )
    name = models.CharField(
        max_length=100,
        blank=True,
        default="",
    )
    config = models.JSONField(
        default=dict,
        blank=True,
        help_text="Adapter-specific config (tokens, webhook URLs, workflow names, etc.).",
    )
    is_active = models.BooleanField(
        default=True,
        db_index=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["tenant_id", "kind"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "kind"],
                condition=Q(is_active=True),
                name="unique_active_integration_per_tenant_kind",
            )
        ]

    def __str__(self):
        status = "active" if self.is_active else "inactive"
        return f"{self.tenant_id}:{self.kind} ({self.provider}) [{status}]"

    def save(self, *args, **kwargs):
        if self.is_active:
            with transaction.atomic():
                TenantIntegration.objects.filter(
                    tenant_id=self.tenant_id, kind=self.kind, is_active=True
                ).exclude(pk=self.pk).update(is_active=False)
                super().save(*args, **kwargs)
        else:
            super().save(*args, **kwargs)
