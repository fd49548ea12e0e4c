"""
Per-release distributed lock backed by the CronLock table.

Only one scheduler instance may advance a given release at a time. A lease
is time-bounded; once it expires any instance may reclaim it, so a crashed
holder never blocks a release for longer than the TTL.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.orchestration.models import CronLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    """Proof of lock ownership returned by ``LockService.acquire``."""

    release_id: str
    owner_token: str
    expires_at: datetime


class LockService:
    """Acquire, renew and release per-release leases."""

    def __init__(self, ttl_seconds: int | None = None):
        self.ttl_seconds = ttl_seconds or getattr(settings, "RELEASES_LOCK_TTL_SECONDS", 300)

    def acquire(
        self,
        release_id,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> Lease | None:
        """
        Try to take the lease for a release.

        Args:
            release_id: Release to lock.
            ttl_seconds: Lease duration (defaults to RELEASES_LOCK_TTL_SECONDS).
            now: Current time, injectable for tests.

        Returns:
            A Lease, or None if another holder has an unexpired lease. None is
            not an error: the caller skips the release until the next tick.
        """
        release_id = str(release_id)
        now = now or timezone.now()
        token = uuid.uuid4().hex
        expires_at = now + timedelta(seconds=ttl_seconds or self.ttl_seconds)

        # Reclaim an expired lease regardless of its previous owner.
        reclaimed = CronLock.objects.filter(release_id=release_id, expires_at__lte=now).update(
            owner_token=token, acquired_at=now, expires_at=expires_at
        )
        if reclaimed:
            logger.info(f"Reclaimed expired lock for release {release_id}")
            return Lease(release_id=release_id, owner_token=token, expires_at=expires_at)

        try:
            with transaction.atomic():
                CronLock.objects.create(
                    release_id=release_id,
                    owner_token=token,
                    acquired_at=now,
                    expires_at=expires_at,
                )
        except IntegrityError:
            logger.debug(f"Lock busy for release {release_id}")
            return None

        return Lease(release_id=release_id, owner_token=token, expires_at=expires_at)

    def renew(
        self,
        lease: Lease,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> Lease | None:
        """Extend a lease. Returns None if the lease was reclaimed by someone else."""
        now = now or timezone.now()
        expires_at = now + timedelta(seconds=ttl_seconds or self.ttl_seconds)
        updated = CronLock.objects.filter(
            release_id=lease.release_id, owner_token=lease.owner_token
        ).update(expires_at=expires_at)
        if not updated:
            logger.warning(f"Lost lock for release {lease.release_id}; renew rejected")
            return None
        return Lease(
            release_id=lease.release_id, owner_token=lease.owner_token, expires_at=expires_at
        )

    def release(self, lease: Lease) -> bool:
        """Drop a lease. Only the current owner can delete the row."""
        deleted, _ = CronLock.objects.filter(
            release_id=lease.release_id, owner_token=lease.owner_token
        ).delete()
        if not deleted:
            logger.warning(f"Lock for release {lease.release_id} was already reclaimed")
        return bool(deleted)

    @contextmanager
    def hold(self, release_id, ttl_seconds: int | None = None) -> Iterator[Lease | None]:
        """Context manager yielding a Lease (or None when busy) and releasing it on exit."""
        lease = self.acquire(release_id, ttl_seconds=ttl_seconds)
        try:
            yield lease
        finally:
            if lease is not None:
                self.release(lease)
