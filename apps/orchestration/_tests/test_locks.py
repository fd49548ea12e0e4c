"""Tests for the per-release lease service."""

from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from apps.orchestration.locks import LockService
from apps.orchestration.models import CronLock


class LockServiceTests(TestCase):
    def setUp(self):
        self.service = LockService(ttl_seconds=60)
        self.now = timezone.now()

    def test_second_acquire_is_rejected_while_lease_is_live(self):
        first = self.service.acquire("rel-1", now=self.now)
        second = self.service.acquire("rel-1", now=self.now + timedelta(seconds=30))

        assert first is not None
        assert second is None
        assert CronLock.objects.get(release_id="rel-1").owner_token == first.owner_token

    def test_expired_lease_can_be_reclaimed(self):
        first = self.service.acquire("rel-1", now=self.now)
        second = self.service.acquire("rel-1", now=self.now + timedelta(seconds=61))

        assert second is not None
        assert second.owner_token != first.owner_token

    def test_release_frees_the_lock(self):
        lease = self.service.acquire("rel-1", now=self.now)
        assert self.service.release(lease) is True
        assert self.service.acquire("rel-1", now=self.now) is not None

    def test_stale_owner_cannot_release_or_renew_a_reclaimed_lease(self):
        stale = self.service.acquire("rel-1", now=self.now)
        fresh = self.service.acquire("rel-1", now=self.now + timedelta(minutes=5))

        assert self.service.renew(stale, now=self.now + timedelta(minutes=5)) is None
        assert self.service.release(stale) is False
        assert CronLock.objects.get(release_id="rel-1").owner_token == fresh.owner_token

    def test_renew_extends_expiry(self):
        lease = self.service.acquire("rel-1", now=self.now)
        renewed = self.service.renew(lease, ttl_seconds=120, now=self.now + timedelta(seconds=50))

        assert renewed.expires_at == self.now + timedelta(seconds=170)
        assert self.service.acquire("rel-1", now=self.now + timedelta(seconds=100)) is None

    def test_locks_are_per_release(self):
        assert self.service.acquire("rel-1", now=self.now) is not None
        assert self.service.acquire("rel-2", now=self.now) is not None

    def test_hold_releases_on_exit(self):
        with self.service.hold("rel-1") as lease:
            assert lease is not None
            with self.service.hold("rel-1") as busy:
                assert busy is None
        assert not CronLock.objects.filter(release_id="rel-1").exists()
