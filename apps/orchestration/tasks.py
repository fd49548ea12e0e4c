"""Celery tasks for release orchestration.

These tasks wrap the ReleaseScheduler and the polling service for
background execution via Celery beat.
"""

from __future__ import annotations

from typing import Any

from celery import shared_task


@shared_task(bind=True)
def run_scheduler_tick(self) -> list[dict[str, Any]]:
    """
    Celery task running one scheduler tick across all active releases.

    Returns:
        List of TickResult dicts.
    """
    from apps.orchestration.scheduler import ReleaseScheduler

    scheduler = ReleaseScheduler()
    return [result.to_dict() for result in scheduler.tick()]


@shared_task(bind=True)
def process_release_task(self, release_id: str) -> dict[str, Any]:
    """
    Celery task running one scheduler pass for a single release.

    Args:
        release_id: Release to advance.

    Returns:
        TickResult as dict.
    """
    from apps.orchestration.scheduler import ReleaseScheduler
    from apps.releases.models import Release

    release = Release.objects.get(pk=release_id)
    return ReleaseScheduler().process_release(release).to_dict()


@shared_task(bind=True)
def poll_release_workflows(self, release_id: str, mode: str = "running") -> dict[str, Any]:
    """
    Celery task running one polling pass for a release.

    Args:
        release_id: Release whose in-flight tasks are reconciled.
        mode: "pending" or "running".

    Returns:
        PollSummary as dict.
    """
    from apps.orchestration.polling import PollMode, WorkflowPollingService
    from apps.releases.models import Release

    release = Release.objects.get(pk=release_id)
    poller = WorkflowPollingService()
    if mode == PollMode.PENDING:
        return poller.poll_pending(release).to_dict()
    return poller.poll_running(release).to_dict()
