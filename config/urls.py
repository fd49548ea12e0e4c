"""URL configuration for the release orchestrator project."""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/releases/", include("apps.releases.urls")),
    path("api/releases/", include("apps.builds.urls")),
    path("", include("apps.orchestration.urls")),
]
