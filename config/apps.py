"""Custom Django admin app configuration."""

from django.contrib.admin.apps import AdminConfig


class ReleaseAdminConfig(AdminConfig):
    default_site = "config.admin.ReleaseAdminSite"
