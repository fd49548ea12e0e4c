"""HTTP views for release lifecycle operations."""

from apps.releases.views.abort import AbortReleaseView
from apps.releases.views.approval import ApproveRegressionView
from apps.releases.views.cycles import AbandonCycleView, CycleListView

__all__ = [
    "AbandonCycleView",
    "AbortReleaseView",
    "ApproveRegressionView",
    "CycleListView",
]
