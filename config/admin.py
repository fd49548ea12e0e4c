"""Custom admin site for the release orchestration console."""

from django.contrib.admin import AdminSite
from django.db.models import Count


class ReleaseAdminSite(AdminSite):
    site_header = "Release Orchestrator"
    site_title = "Release Orchestrator"
    index_title = "Releases"

    def index(self, request, extra_context=None):
        extra_context = extra_context or {}
        extra_context.update(self._get_dashboard_context())
        return super().index(request, extra_context=extra_context)

    def _get_dashboard_context(self):
        from apps.orchestration.models import Task, TaskStatus
        from apps.releases.models import Release, ReleasePhase

        releases_by_phase = dict(
            Release.objects.filter(is_archived=False, aborted_at__isnull=True)
            .values_list("phase")
            .annotate(count=Count("id"))
            .values_list("phase", "count")
        )
        task_counts = dict(
            Task.objects.exclude(release__phase=ReleasePhase.DONE)
            .values_list("status")
            .annotate(count=Count("id"))
            .values_list("status", "count")
        )
        return {
            "releases_by_phase": {p: releases_by_phase.get(p, 0) for p in ReleasePhase.values},
            "task_health": {
                "failed": task_counts.get(TaskStatus.FAILED, 0),
                "in_flight": task_counts.get(TaskStatus.IN_PROGRESS, 0)
                + task_counts.get(TaskStatus.AWAITING_CALLBACK, 0),
                "pending": task_counts.get(TaskStatus.PENDING, 0),
            },
        }
