"""Model builders shared by the release orchestration tests."""

from datetime import timedelta

from django.utils import timezone

from apps.releases.models import Platform, RegressionCycle, Release, ReleasePhase


def make_release(**overrides) -> Release:
    now = timezone.now()
    values = {
        "tenant_id": "tenant-1",
        "name": "Spring release",
        "version": "1.2.0",
        "branch": "release/1.2.0",
        "platforms": [Platform.ANDROID, Platform.IOS],
        "kickoff_at": now - timedelta(hours=1),
        "target_release_at": now + timedelta(days=14),
        "phase": ReleasePhase.KICKOFF,
    }
    values.update(overrides)
    return Release.objects.create(**values)


def make_cycle(release: Release, **overrides) -> RegressionCycle:
    values = {"number": RegressionCycle.objects.next_number(release)}
    values.update(overrides)
    return RegressionCycle.objects.create(release=release, **values)
