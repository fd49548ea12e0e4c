"""Django app configuration for the releases app."""

from django.apps import AppConfig


class ReleasesConfig(AppConfig):
    """Configuration for the Releases app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.releases"
    verbose_name = "Releases"
