"""
Models for release orchestration.

Provides persistent state for release tasks (the append-only execution
history of a release) and the per-release cron lock.
"""

from __future__ import annotations

import uuid
from typing import Any, Iterable

from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class Stage(models.TextChoices):
    """Pipeline stages in execution order."""

    KICKOFF = "KICKOFF", "Kickoff"
    REGRESSION = "REGRESSION", "Regression"
    POST_REGRESSION = "POST_REGRESSION", "Post-regression"


def parse_stage(value: str | None) -> str | None:
    """Map a URL/query value such as ``post-regression`` to a Stage value."""
    if not value:
        return None
    normalized = value.strip().upper().replace("-", "_")
    return normalized if normalized in Stage.values else None


class TaskStatus(models.TextChoices):
    """Task execution status (state machine)."""

    PENDING = "PENDING", "Pending"
    IN_PROGRESS = "IN_PROGRESS", "In progress"
    AWAITING_CALLBACK = "AWAITING_CALLBACK", "Awaiting callback"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"


IN_FLIGHT_STATUSES = [TaskStatus.IN_PROGRESS, TaskStatus.AWAITING_CALLBACK]


class TaskConclusion(models.TextChoices):
    SUCCESS = "success", "Success"
    FAILURE = "failure", "Failure"


class TaskType(models.TextChoices):
    """Fixed task catalogue across all stages."""

    # Kickoff
    FORK_BRANCH = "FORK_BRANCH", "Fork release branch"
    CREATE_PROJECT_MANAGEMENT_TICKET = (
        "CREATE_PROJECT_MANAGEMENT_TICKET",
        "Create project management ticket",
    )
    TRIGGER_PRE_REGRESSION_BUILDS = "TRIGGER_PRE_REGRESSION_BUILDS", "Pre-regression builds"

    # Regression (per cycle)
    CREATE_REGRESSION_CYCLE = "CREATE_REGRESSION_CYCLE", "Start regression cycle"
    CREATE_RC_TAG = "CREATE_RC_TAG", "Create RC tag"
    CREATE_RELEASE_NOTES = "CREATE_RELEASE_NOTES", "Create release notes"
    TRIGGER_REGRESSION_BUILDS = "TRIGGER_REGRESSION_BUILDS", "Regression builds"
    CREATE_TEST_RUN = "CREATE_TEST_RUN", "Create test run"
    SEND_REGRESSION_BUILD_MESSAGE = "SEND_REGRESSION_BUILD_MESSAGE", "Send regression build message"

    # Post-regression
    CREATE_RELEASE_TAG = "CREATE_RELEASE_TAG", "Create release tag"
    CREATE_FINAL_RELEASE_NOTES = "CREATE_FINAL_RELEASE_NOTES", "Create final release notes"
    TRIGGER_RELEASE_BUILDS = "TRIGGER_RELEASE_BUILDS", "Release builds"
    CHECK_PROJECT_RELEASE_APPROVAL = (
        "CHECK_PROJECT_RELEASE_APPROVAL",
        "Check project release approval",
    )
    SEND_POST_REGRESSION_MESSAGE = "SEND_POST_REGRESSION_MESSAGE", "Send post-regression message"


class TaskQuerySet(models.QuerySet):
    def for_stage(self, release, stage: str, cycle=None):
        qs = self.filter(release=release, stage=stage)
        if cycle is not None:
            qs = qs.filter(cycle=cycle)
        return qs

    def in_flight(self):
        return self.filter(status__in=IN_FLIGHT_STATUSES)

    def retryable(self):
        return self.filter(
            Q(status__in=[TaskStatus.FAILED, *IN_FLIGHT_STATUSES])
            | Q(status=TaskStatus.COMPLETED, conclusion=TaskConclusion.FAILURE)
        )


class Task(models.Model):
    """
    A single unit of orchestrated work within a stage.

    Identity ``(release, stage, cycle, task_type, platform)`` is fixed at
    creation and stored as ``identity_key``. Tasks are never deleted: retry
    resets the row to PENDING and bumps ``attempt``.

    Every status change is a conditional update on the expected current status
    so a losing concurrent writer is rejected instead of overwriting.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    release = models.ForeignKey(
        "releases.Release",
        on_delete=models.CASCADE,
        related_name="tasks",
    )
    cycle = models.ForeignKey(
        "releases.RegressionCycle",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="tasks",
        help_text="Regression cycle this task belongs to (REGRESSION stage only).",
    )
    stage = models.CharField(max_length=20, choices=Stage.choices, db_index=True)
    task_type = models.CharField(max_length=64, choices=TaskType.choices, db_index=True)
    platform = models.CharField(max_length=20, blank=True, default="")

    # State machine
    status = models.CharField(
        max_length=20,
        choices=TaskStatus.choices,
        default=TaskStatus.PENDING,
        db_index=True,
    )
    conclusion = models.CharField(
        max_length=10,
        choices=TaskConclusion.choices,
        null=True,
        blank=True,
    )
    depends_on = models.JSONField(
        default=list,
        blank=True,
        help_text="IDs of tasks that must complete successfully first.",
    )

    # External tracking
    external_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Provider job/run/ticket id for asynchronous work.",
    )
    external_data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Provider output and last error (error, error_type).",
    )

    identity_key = models.CharField(max_length=255, unique=True)
    attempt = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    objects = TaskQuerySet.as_manager()

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["release", "stage", "status"]),
            models.Index(fields=["status", "updated_at"]),
        ]

    def __str__(self):
        suffix = f":{self.platform}" if self.platform else ""
        return f"{self.task_type}{suffix} [{self.status}]"

    @staticmethod
    def build_identity_key(release_id, stage: str, cycle_id, task_type: str, platform: str = "") -> str:
        return ":".join(
            [str(release_id), stage, str(cycle_id or "-"), task_type, platform or "-"]
        )

    @property
    def is_successful(self) -> bool:
        return self.status == TaskStatus.COMPLETED and self.conclusion == TaskConclusion.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.status == TaskStatus.FAILED or (
            self.status == TaskStatus.COMPLETED and self.conclusion == TaskConclusion.FAILURE
        )

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    @property
    def error(self) -> str | None:
        return (self.external_data or {}).get("error")

    def transition(self, expected: Iterable[str], status: str, **fields: Any) -> bool:
        """
        Conditionally move this task to ``status``.

        Args:
            expected: Statuses the row must currently be in.
            status: New status.
            **fields: Extra column values to write in the same update.

        Returns:
            True if this writer won the update, False if the row had already moved.
        """
        values = {"status": status, "updated_at": timezone.now(), **fields}
        updated = Task.objects.filter(pk=self.pk, status__in=list(expected)).update(**values)
        if updated:
            for key, value in values.items():
                setattr(self, key, value)
        return bool(updated)

    def _merged_data(self, data: dict[str, Any] | None = None, drop_error: bool = False) -> dict:
        merged = dict(self.external_data or {})
        if drop_error:
            merged.pop("error", None)
            merged.pop("error_type", None)
        merged.update(data or {})
        return merged

    def claim(self) -> bool:
        """PENDING → IN_PROGRESS. Only one dispatcher can win the claim."""
        return self.transition(
            [TaskStatus.PENDING], TaskStatus.IN_PROGRESS, started_at=timezone.now()
        )

    def mark_in_progress(self, data: dict[str, Any] | None = None) -> bool:
        """AWAITING_CALLBACK → IN_PROGRESS once the external job has started."""
        return self.transition(
            [TaskStatus.AWAITING_CALLBACK],
            TaskStatus.IN_PROGRESS,
            external_data=self._merged_data(data),
        )

    def mark_awaiting(self, external_id: str, data: dict[str, Any] | None = None) -> bool:
        """IN_PROGRESS → AWAITING_CALLBACK after async work was started."""
        return self.transition(
            [TaskStatus.IN_PROGRESS],
            TaskStatus.AWAITING_CALLBACK,
            external_id=external_id,
            external_data=self._merged_data(data),
        )

    def mark_completed(
        self,
        conclusion: str = TaskConclusion.SUCCESS,
        data: dict[str, Any] | None = None,
        expected: Iterable[str] = (TaskStatus.IN_PROGRESS,),
    ) -> bool:
        return self.transition(
            expected,
            TaskStatus.COMPLETED,
            conclusion=conclusion,
            completed_at=timezone.now(),
            external_data=self._merged_data(data),
        )

    def mark_failed(
        self,
        error: str,
        error_type: str = "Error",
        expected: Iterable[str] = (TaskStatus.IN_PROGRESS,),
    ) -> bool:
        return self.transition(
            expected,
            TaskStatus.FAILED,
            conclusion=TaskConclusion.FAILURE,
            completed_at=timezone.now(),
            external_data=self._merged_data({"error": error, "error_type": error_type}),
        )

    def reset_for_retry(self) -> bool:
        """
        Reset a failed or stuck task to PENDING in place.

        Clears conclusion, error and external id and increments ``attempt``.
        Returns False if the task was not in a retryable state.
        """
        updated = (
            Task.objects.filter(pk=self.pk)
            .retryable()
            .update(
                status=TaskStatus.PENDING,
                conclusion=None,
                external_id="",
                external_data=self._merged_data(drop_error=True),
                attempt=F("attempt") + 1,
                started_at=None,
                completed_at=None,
                updated_at=timezone.now(),
            )
        )
        if updated:
            self.refresh_from_db()
        return bool(updated)

    def to_dict(self, block_reason: str | None = None) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "release_id": str(self.release_id),
            "cycle_id": str(self.cycle_id) if self.cycle_id else None,
            "stage": self.stage,
            "task_type": self.task_type,
            "platform": self.platform or None,
            "status": self.status,
            "conclusion": self.conclusion,
            "depends_on": list(self.depends_on or []),
            "external_id": self.external_id or None,
            "external_data": self.external_data or {},
            "error": self.error,
            "attempt": self.attempt,
            "block_reason": block_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CronLock(models.Model):
    """
    Time-bounded exclusive lease for advancing one release.

    One row per release (unique ``release_id``). A row whose ``expires_at``
    has passed may be reclaimed by any scheduler instance.
    """

    release_id = models.CharField(max_length=64, unique=True)
    owner_token = models.CharField(max_length=64)
    acquired_at = models.DateTimeField(default=timezone.now)
    expires_at = models.DateTimeField(db_index=True)

    class Meta:
        ordering = ["expires_at"]

    def __str__(self):
        return f"Lock {self.release_id} until {self.expires_at:%Y-%m-%d %H:%M:%S}"

    def is_expired(self, now=None) -> bool:
        return self.expires_at <= (now or timezone.now())
