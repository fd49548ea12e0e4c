"""URL configuration for the releases app."""

from django.urls import path

from apps.releases.views import (
    AbandonCycleView,
    AbortReleaseView,
    ApproveRegressionView,
    CycleListView,
)

app_name = "releases"

urlpatterns = [
    path(
        "<str:release_id>/stages/regression/approve",
        ApproveRegressionView.as_view(),
        name="regression-approve",
    ),
    path(
        "<str:release_id>/regression/cycles",
        CycleListView.as_view(),
        name="cycle-list",
    ),
    path(
        "<str:release_id>/regression/cycles/<str:cycle_id>/abandon",
        AbandonCycleView.as_view(),
        name="cycle-abandon",
    ),
    path("<str:release_id>/abort", AbortReleaseView.as_view(), name="release-abort"),
]
