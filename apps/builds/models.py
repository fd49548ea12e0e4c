"""
Build upload models.

Tracks manually staged build artifacts per (release, stage, platform).
"""

import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone


class BuildUpload(models.Model):
    """
    A manually staged platform build.

    ``is_used`` flips to True exactly once, through a conditional update, when
    a task or regression cycle consumes the upload. Used uploads are immutable
    and cannot be deleted. At most one unused upload exists per
    (release, stage, platform).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    release = models.ForeignKey(
        "releases.Release",
        on_delete=models.CASCADE,
        related_name="build_uploads",
    )
    stage = models.CharField(max_length=20, db_index=True)
    platform = models.CharField(max_length=20, db_index=True)

    artifact_path = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Storage path of the uploaded artifact.",
    )
    testflight_number = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="TestFlight build number for iOS builds staged without a file.",
    )

    is_used = models.BooleanField(default=False, db_index=True)
    used_by_task = models.ForeignKey(
        "orchestration.Task",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="consumed_uploads",
    )
    used_by_cycle = models.ForeignKey(
        "releases.RegressionCycle",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="consumed_uploads",
    )
    used_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["release", "stage", "platform"],
                condition=Q(is_used=False),
                name="unique_unused_upload_per_platform",
            )
        ]

    def __str__(self):
        state = "used" if self.is_used else "available"
        return f"{self.platform} build for {self.release_id} ({self.stage}) [{state}]"

    def mark_used(self, task=None, cycle=None) -> bool:
        """Conditionally flag this upload as consumed. Returns False if already used."""
        now = timezone.now()
        updated = BuildUpload.objects.filter(pk=self.pk, is_used=False).update(
            is_used=True,
            used_by_task=task,
            used_by_cycle=cycle,
            used_at=now,
            updated_at=now,
        )
        if updated:
            self.is_used = True
            self.used_by_task = task
            self.used_by_cycle = cycle
            self.used_at = now
        return bool(updated)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "release_id": str(self.release_id),
            "stage": self.stage,
            "platform": self.platform,
            "artifact_path": self.artifact_path,
            "testflight_number": self.testflight_number or None,
            "is_used": self.is_used,
            "used_by_task_id": str(self.used_by_task_id) if self.used_by_task_id else None,
            "used_by_cycle_id": str(self.used_by_cycle_id) if self.used_by_cycle_id else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
