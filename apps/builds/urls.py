"""URL configuration for the builds app."""

from django.urls import path

from apps.builds.views import BuildUploadView, VerifyTestflightView

app_name = "builds"

urlpatterns = [
    path(
        "<str:release_id>/stages/<str:stage>/builds/ios/verify-testflight",
        VerifyTestflightView.as_view(),
        name="verify-testflight",
    ),
    path(
        "<str:release_id>/stages/<str:stage>/builds/<str:platform>",
        BuildUploadView.as_view(),
        name="build-upload",
    ),
]
