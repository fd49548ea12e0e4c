"""URL configuration for the orchestration app."""

from django.urls import path

from apps.orchestration.polling import PollMode
from apps.orchestration.views import PollWorkflowsView, TaskListView, TaskRetryView

app_name = "orchestration"

urlpatterns = [
    # Internal cron endpoints
    path(
        "internal/cron/builds/poll-pending-workflows",
        PollWorkflowsView.as_view(mode=PollMode.PENDING),
        name="poll-pending-workflows",
    ),
    path(
        "internal/cron/builds/poll-running-workflows",
        PollWorkflowsView.as_view(mode=PollMode.RUNNING),
        name="poll-running-workflows",
    ),
    # Release task endpoints
    path("api/releases/<str:release_id>/tasks", TaskListView.as_view(), name="task-list"),
    path(
        "api/releases/<str:release_id>/tasks/<str:task_id>/retry",
        TaskRetryView.as_view(),
        name="task-retry",
    ),
]
