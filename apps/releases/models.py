"""
Models for mobile app releases.

A Release moves through a fixed phase graph
(KICKOFF → REGRESSION → POST_REGRESSION → DONE). Regression cycles are
scheduled by RegressionSlot rows and tracked as RegressionCycle rows.
"""

from __future__ import annotations

import datetime as dt
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Max, Q
from django.utils import timezone


class ReleasePhase(models.TextChoices):
    """Release phase (state machine)."""

    KICKOFF = "KICKOFF", "Kickoff"
    REGRESSION = "REGRESSION", "Regression"
    POST_REGRESSION = "POST_REGRESSION", "Post-regression"
    DONE = "DONE", "Done"


class Platform(models.TextChoices):
    """Target platforms a release can ship to."""

    ANDROID = "ANDROID", "Android"
    IOS = "IOS", "iOS"
    WEB = "WEB", "Web"


class CycleStatus(models.TextChoices):
    """Status of a regression cycle."""

    NOT_STARTED = "NOT_STARTED", "Not started"
    IN_PROGRESS = "IN_PROGRESS", "In progress"
    DONE = "DONE", "Done"
    ABANDONED = "ABANDONED", "Abandoned"


class Release(models.Model):
    """
    A single app release tracked by the orchestration engine.

    Phase changes only happen through ``advance_phase``, which is a
    conditional update guarded by the expected current phase.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    tenant_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Tenant (app) identifier.",
    )
    name = models.CharField(max_length=255, blank=True, default="")
    version = models.CharField(max_length=50)

    phase = models.CharField(
        max_length=20,
        choices=ReleasePhase.choices,
        default=ReleasePhase.KICKOFF,
        db_index=True,
    )

    # Source control
    branch = models.CharField(max_length=255, help_text="Release branch to fork.")
    base_branch = models.CharField(max_length=255, default="main")
    release_tag = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Most recent tag cut for this release (RC tag, then final tag).",
    )

    # Targets
    platforms = models.JSONField(
        default=list,
        help_text="Target platforms, e.g. ['ANDROID', 'IOS'].",
    )
    manual_build_upload = models.BooleanField(
        default=False,
        help_text="Builds are uploaded manually instead of being triggered on CI/CD.",
    )
    config = models.JSONField(
        default=dict,
        blank=True,
        help_text="Release options (pre_regression_builds, pass_threshold_percent, tag_prefix).",
    )

    # Schedule
    kickoff_at = models.DateTimeField()
    target_release_at = models.DateTimeField()

    aborted_at = models.DateTimeField(null=True, blank=True)
    is_archived = models.BooleanField(default=False, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-kickoff_at"]
        indexes = [
            models.Index(fields=["phase", "kickoff_at"]),
            models.Index(fields=["tenant_id", "version"]),
        ]

    def __str__(self):
        return f"Release {self.version} ({self.tenant_id}) [{self.phase}]"

    def clean(self):
        if self.kickoff_at and self.target_release_at and self.target_release_at <= self.kickoff_at:
            raise ValidationError({"target_release_at": "Target release must be after kickoff."})

    @property
    def is_aborted(self) -> bool:
        return self.aborted_at is not None

    @property
    def pass_threshold(self) -> float:
        default = getattr(settings, "RELEASES_DEFAULT_PASS_THRESHOLD", 100)
        return float(self.config.get("pass_threshold_percent", default))

    @property
    def tag_prefix(self) -> str:
        return self.config.get("tag_prefix", "v")

    def rc_tag_name(self, cycle_number: int) -> str:
        return f"{self.tag_prefix}{self.version}-rc{cycle_number}"

    def final_tag_name(self) -> str:
        return f"{self.tag_prefix}{self.version}"

    def advance_phase(self, from_phase: str, to_phase: str) -> bool:
        """Move from ``from_phase`` to ``to_phase`` only if the row is still in ``from_phase``."""
        now = timezone.now()
        updated = Release.objects.filter(pk=self.pk, phase=from_phase).update(
            phase=to_phase, updated_at=now
        )
        if updated:
            self.phase = to_phase
            self.updated_at = now
        return bool(updated)

    def set_release_tag(self, tag: str):
        self.release_tag = tag
        self.save(update_fields=["release_tag", "updated_at"])


def offset_to_absolute(
    offset_days: int, slot_time: dt.time, kickoff_at: dt.datetime
) -> dt.datetime:
    """Resolve an offset-from-kickoff slot to an aware datetime in the current timezone."""
    kickoff_date = timezone.localtime(kickoff_at).date()
    naive = dt.datetime.combine(kickoff_date + dt.timedelta(days=offset_days), slot_time)
    return timezone.make_aware(naive)


def absolute_to_offset(scheduled_date: dt.date, kickoff_at: dt.datetime) -> int:
    """Number of calendar days between the kickoff date and ``scheduled_date``."""
    return (scheduled_date - timezone.localtime(kickoff_at).date()).days


class RegressionSlot(models.Model):
    """
    A scheduled point in time at which a regression cycle should start.

    Either ``scheduled_date`` or ``offset_days`` is set; ``scheduled_time`` is
    always set. Both forms are convertible given the release kickoff.
    """

    release = models.ForeignKey(
        Release,
        on_delete=models.CASCADE,
        related_name="regression_slots",
    )
    scheduled_date = models.DateField(null=True, blank=True)
    offset_days = models.IntegerField(
        null=True,
        blank=True,
        help_text="Days after the kickoff date.",
    )
    scheduled_time = models.TimeField()
    config = models.JSONField(default=dict, blank=True)
    consumed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a cycle was created for this slot.",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["release", "created_at"]

    def __str__(self):
        when = self.scheduled_date or f"kickoff+{self.offset_days}d"
        return f"Slot {when} {self.scheduled_time} for {self.release_id}"

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None

    def scheduled_at(self, kickoff_at: dt.datetime | None = None) -> dt.datetime:
        """Absolute start time of this slot."""
        if self.scheduled_date is not None:
            return timezone.make_aware(dt.datetime.combine(self.scheduled_date, self.scheduled_time))
        if self.offset_days is None:
            raise ValidationError("Slot needs either scheduled_date or offset_days.")
        return offset_to_absolute(
            self.offset_days, self.scheduled_time, kickoff_at or self.release.kickoff_at
        )

    def to_absolute(self, kickoff_at: dt.datetime | None = None) -> tuple[dt.date, dt.time]:
        """Return this slot as an absolute ``(date, time)`` pair."""
        return self.scheduled_at(kickoff_at).date(), self.scheduled_time

    def to_offset(self, kickoff_at: dt.datetime | None = None) -> tuple[int, dt.time]:
        """Return this slot as an ``(offset_days, time)`` pair."""
        if self.offset_days is not None:
            return self.offset_days, self.scheduled_time
        kickoff_at = kickoff_at or self.release.kickoff_at
        return absolute_to_offset(self.scheduled_date, kickoff_at), self.scheduled_time

    def clean(self):
        if self.scheduled_date is None and self.offset_days is None:
            raise ValidationError("Slot needs either scheduled_date or offset_days.")
        when = self.scheduled_at()
        if not (self.release.kickoff_at < when < self.release.target_release_at):
            raise ValidationError(
                "Regression slot must fall strictly between kickoff and target release."
            )


class RegressionCycleQuerySet(models.QuerySet):
    def for_release(self, release):
        return self.filter(release=release)

    def current_for(self, release):
        """The cycle currently being worked on, derived from cycle rows."""
        return (
            self.for_release(release)
            .filter(status__in=[CycleStatus.IN_PROGRESS, CycleStatus.NOT_STARTED])
            .order_by("-created_at", "-number")
            .first()
        )

    def latest_for(self, release):
        return self.for_release(release).order_by("-created_at", "-number").first()

    def next_number(self, release) -> int:
        current = self.for_release(release).aggregate(n=Max("number"))["n"]
        return (current or 0) + 1


class RegressionCycle(models.Model):
    """One round of build + test verification within the REGRESSION phase."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    release = models.ForeignKey(
        Release,
        on_delete=models.CASCADE,
        related_name="cycles",
    )
    slot = models.ForeignKey(
        RegressionSlot,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="cycles",
    )
    number = models.PositiveIntegerField(default=1)
    status = models.CharField(
        max_length=20,
        choices=CycleStatus.choices,
        default=CycleStatus.NOT_STARTED,
        db_index=True,
    )
    tag = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = RegressionCycleQuerySet.as_manager()

    class Meta:
        ordering = ["release", "number"]
        constraints = [
            models.UniqueConstraint(
                fields=["release"],
                condition=Q(status=CycleStatus.IN_PROGRESS),
                name="unique_in_progress_cycle_per_release",
            ),
            models.UniqueConstraint(
                fields=["release", "number"],
                name="unique_cycle_number_per_release",
            ),
        ]

    def __str__(self):
        return f"Cycle {self.number} of {self.release_id} [{self.status}]"

    def transition(self, expected: list[str], status: str, **fields) -> bool:
        """Conditionally move to ``status`` if the row is in one of ``expected``."""
        updated = RegressionCycle.objects.filter(pk=self.pk, status__in=expected).update(
            status=status, **fields
        )
        if updated:
            self.status = status
            for key, value in fields.items():
                setattr(self, key, value)
        return bool(updated)

    def mark_started(self) -> bool:
        return self.transition(
            [CycleStatus.NOT_STARTED], CycleStatus.IN_PROGRESS, started_at=timezone.now()
        )

    def mark_done(self) -> bool:
        return self.transition(
            [CycleStatus.IN_PROGRESS], CycleStatus.DONE, completed_at=timezone.now()
        )

    def mark_abandoned(self) -> bool:
        return self.transition(
            [CycleStatus.NOT_STARTED, CycleStatus.IN_PROGRESS],
            CycleStatus.ABANDONED,
            completed_at=timezone.now(),
        )

    def set_tag(self, tag: str):
        self.tag = tag
        self.save(update_fields=["tag"])
