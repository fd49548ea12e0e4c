"""Release lifecycle services that sit outside the scheduler tick."""

from __future__ import annotations

import logging

from django.utils import timezone

from apps.orchestration.locks import LockService
from apps.releases.errors import ReleaseAbortError
from apps.releases.models import Release, ReleasePhase

logger = logging.getLogger(__name__)


def abort_release(release: Release, lock_service: LockService | None = None) -> Release:
    """
    Abort a release before its kickoff stage begins.

    The release lock is held while checking so the scheduler cannot start
    kickoff concurrently. Once any kickoff task exists the release can no
    longer be aborted.

    Raises:
        ReleaseAbortError: If the release is busy, already aborted or its
            kickoff has started.
    """
    lock_service = lock_service or LockService()
    with lock_service.hold(release.id) as lease:
        if lease is None:
            raise ReleaseAbortError("Release is being processed; try again shortly")
        release.refresh_from_db()
        if release.is_aborted:
            raise ReleaseAbortError("Release is already aborted")
        if release.phase != ReleasePhase.KICKOFF or release.tasks.exists():
            raise ReleaseAbortError("Release cannot be aborted once kickoff has started")

        now = timezone.now()
        updated = Release.objects.filter(
            pk=release.pk, phase=ReleasePhase.KICKOFF, aborted_at__isnull=True
        ).update(aborted_at=now, updated_at=now)
        if not updated:
            raise ReleaseAbortError("Release changed while aborting")

    release.aborted_at = now
    logger.info(f"Release {release.id} aborted before kickoff")
    return release
