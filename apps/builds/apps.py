"""Django app configuration for the builds app."""

from django.apps import AppConfig


class BuildsConfig(AppConfig):
    """Configuration for the Build Uploads app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.builds"
    verbose_name = "Build Uploads"
