"""
Task sequencer.

Defines the fixed task set of every stage, creates it idempotently on first
entry, and decides which tasks are eligible to run next.

Stage graph (fixed, not user-defined):
    KICKOFF → REGRESSION (one task set per cycle) → POST_REGRESSION
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from django.db import transaction

from apps.builds.ledger import BuildUploadLedger
from apps.integrations.models import IntegrationKind
from apps.integrations.registry import IntegrationResolver, ResolverFactory
from apps.orchestration.errors import TaskRetryError
from apps.orchestration.models import Stage, Task, TaskStatus, TaskType
from apps.orchestration.signals import SignalTags, emit_phase_advanced
from apps.releases.models import ReleasePhase

logger = logging.getLogger(__name__)


class BlockReason:
    """Why a PENDING task is not eligible."""

    WAITING_FOR_DEPENDENCIES = "waiting_for_dependencies"
    FAILED_DEPENDENCY = "failed_dependency"
    WAITING_FOR_UPLOAD = "waiting_for_upload"


@dataclass(frozen=True)
class TaskSpec:
    """
    Static definition of one task within a stage.

    Attributes:
        task_type: TaskType value.
        requires: Task types that must complete successfully first. Types that
            were not created for a release (optional tasks) are ignored.
        per_platform: Create one task per release platform.
        integration: Integration kind the task calls.
        optional: Omit the task when ``integration`` is not configured.
        build: A build task; CI/CD mode calls the CI/CD integration, manual
            mode consumes a staged upload instead.
        upload_stage: In manual mode the task waits for uploads of this stage.
        condition: Extra inclusion predicate on the release.
    """

    task_type: str
    requires: tuple[str, ...] = ()
    per_platform: bool = False
    integration: str | None = None
    optional: bool = False
    build: bool = False
    upload_stage: str | None = None
    condition: Callable | None = None

    def required_kind(self, release) -> str | None:
        if self.build:
            return None if release.manual_build_upload else IntegrationKind.CICD
        return self.integration


def _pre_regression_enabled(release) -> bool:
    return bool(release.config.get("pre_regression_builds", False))


def _ci_mode(release) -> bool:
    return not release.manual_build_upload


STAGE_DEFINITIONS: dict[str, tuple[TaskSpec, ...]] = {
    Stage.KICKOFF: (
        TaskSpec(TaskType.FORK_BRANCH, integration=IntegrationKind.SCM),
        TaskSpec(
            TaskType.CREATE_PROJECT_MANAGEMENT_TICKET,
            requires=(TaskType.FORK_BRANCH,),
            integration=IntegrationKind.PROJECT_MANAGEMENT,
            optional=True,
        ),
        TaskSpec(
            TaskType.TRIGGER_PRE_REGRESSION_BUILDS,
            requires=(TaskType.FORK_BRANCH,),
            per_platform=True,
            build=True,
            upload_stage=Stage.KICKOFF,
            condition=_pre_regression_enabled,
        ),
    ),
    Stage.REGRESSION: (
        TaskSpec(TaskType.CREATE_REGRESSION_CYCLE, upload_stage=Stage.REGRESSION),
        TaskSpec(
            TaskType.CREATE_RC_TAG,
            requires=(TaskType.CREATE_REGRESSION_CYCLE,),
            integration=IntegrationKind.SCM,
        ),
        TaskSpec(
            TaskType.CREATE_RELEASE_NOTES,
            requires=(TaskType.CREATE_RC_TAG,),
            integration=IntegrationKind.SCM,
        ),
        TaskSpec(
            TaskType.TRIGGER_REGRESSION_BUILDS,
            requires=(TaskType.CREATE_RC_TAG,),
            per_platform=True,
            build=True,
            condition=_ci_mode,
        ),
        TaskSpec(
            TaskType.CREATE_TEST_RUN,
            requires=(TaskType.CREATE_REGRESSION_CYCLE, TaskType.TRIGGER_REGRESSION_BUILDS),
            per_platform=True,
            integration=IntegrationKind.TEST_MANAGEMENT,
            optional=True,
        ),
        TaskSpec(
            TaskType.SEND_REGRESSION_BUILD_MESSAGE,
            requires=(TaskType.CREATE_RC_TAG, TaskType.TRIGGER_REGRESSION_BUILDS),
            integration=IntegrationKind.NOTIFICATION,
            optional=True,
        ),
    ),
    Stage.POST_REGRESSION: (
        TaskSpec(TaskType.CREATE_RELEASE_TAG, integration=IntegrationKind.SCM),
        TaskSpec(
            TaskType.CREATE_FINAL_RELEASE_NOTES,
            requires=(TaskType.CREATE_RELEASE_TAG,),
            integration=IntegrationKind.SCM,
        ),
        TaskSpec(
            TaskType.TRIGGER_RELEASE_BUILDS,
            requires=(TaskType.CREATE_RELEASE_TAG,),
            per_platform=True,
            build=True,
            upload_stage=Stage.POST_REGRESSION,
        ),
        TaskSpec(
            TaskType.CHECK_PROJECT_RELEASE_APPROVAL,
            requires=(TaskType.CREATE_FINAL_RELEASE_NOTES,),
            integration=IntegrationKind.PROJECT_MANAGEMENT,
            optional=True,
        ),
        TaskSpec(
            TaskType.SEND_POST_REGRESSION_MESSAGE,
            requires=(TaskType.TRIGGER_RELEASE_BUILDS,),
            integration=IntegrationKind.NOTIFICATION,
            optional=True,
        ),
    ),
}

TASK_SPECS: dict[str, TaskSpec] = {
    spec.task_type: spec for specs in STAGE_DEFINITIONS.values() for spec in specs
}

# Phase a release moves to once every task of the stage succeeded.
AUTO_ADVANCE = {
    Stage.KICKOFF: (ReleasePhase.KICKOFF, ReleasePhase.REGRESSION),
    Stage.POST_REGRESSION: (ReleasePhase.POST_REGRESSION, ReleasePhase.DONE),
}


class TaskSequencer:
    """Creates stage task sets and computes eligibility."""

    def __init__(
        self,
        ledger: BuildUploadLedger | None = None,
        resolver_factory: ResolverFactory | None = None,
    ):
        self.ledger = ledger or BuildUploadLedger()
        self.resolver_factory = resolver_factory or IntegrationResolver

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def should_create(self, spec: TaskSpec, release, resolver) -> bool:
        if spec.condition is not None and not spec.condition(release):
            return False
        if spec.optional and spec.integration and not resolver.has(spec.integration):
            return False
        return True

    def ensure_stage_tasks(self, release, stage: str, cycle=None, resolver=None) -> list[Task]:
        """
        Create the fixed task set for a stage (and cycle) if not present yet.

        Re-entering a stage whose tasks exist is a no-op: existing rows are
        returned untouched, keyed by their identity.

        Args:
            release: Release to seed.
            stage: Stage value.
            cycle: Regression cycle (REGRESSION stage only).
            resolver: Integration resolver used to decide optional tasks.

        Returns:
            All tasks of the stage/cycle in definition order.
        """
        if stage == Stage.REGRESSION and cycle is None:
            raise ValueError("REGRESSION tasks are created per regression cycle")
        resolver = resolver or self.resolver_factory(release.tenant_id)
        cycle_id = cycle.id if cycle is not None else None
        platforms = list(release.platforms or [])

        existing = {
            t.identity_key: t
            for t in Task.objects.filter(release=release, stage=stage, cycle_id=cycle_id)
        }
        by_type: dict[str, list[Task]] = {}
        tasks: list[Task] = []
        created = 0

        with transaction.atomic():
            for spec in STAGE_DEFINITIONS[stage]:
                targets = platforms if spec.per_platform else [""]
                keys = [
                    Task.build_identity_key(release.id, stage, cycle_id, spec.task_type, p)
                    for p in targets
                ]
                already = [existing[k] for k in keys if k in existing]
                if not already and not self.should_create(spec, release, resolver):
                    continue

                depends_on = [
                    str(dep.id) for required in spec.requires for dep in by_type.get(required, [])
                ]
                for platform, key in zip(targets, keys):
                    task = existing.get(key)
                    if task is None:
                        task, was_created = Task.objects.get_or_create(
                            identity_key=key,
                            defaults={
                                "release": release,
                                "cycle": cycle,
                                "stage": stage,
                                "task_type": spec.task_type,
                                "platform": platform,
                                "depends_on": depends_on,
                            },
                        )
                        created += int(was_created)
                    by_type.setdefault(spec.task_type, []).append(task)
                    tasks.append(task)

        if created:
            logger.info(
                f"Created {created} {stage} task(s) for release {release.id}"
                + (f" cycle {cycle.number}" if cycle is not None else "")
            )
        return tasks

    def stage_tasks(self, release, stage: str, cycle=None) -> list[Task]:
        qs = Task.objects.filter(release=release, stage=stage).select_related("release", "cycle")
        if stage == Stage.REGRESSION and cycle is not None:
            qs = qs.filter(cycle=cycle)
        return list(qs.order_by("created_at"))

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def _upload_ready(self, task: Task, release) -> bool:
        spec = TASK_SPECS.get(task.task_type)
        if spec is None or spec.upload_stage is None or not release.manual_build_upload:
            return True
        if spec.per_platform:
            return self.ledger.get_available(release, spec.upload_stage, task.platform) is not None
        return self.ledger.readiness(release, spec.upload_stage).all_ready

    def block_reason(self, task: Task, tasks: list[Task], release=None) -> str | None:
        """Explain why a PENDING task cannot run yet, or None if it can."""
        if task.status != TaskStatus.PENDING:
            return None
        by_id = {str(t.id): t for t in tasks}
        deps = [by_id.get(str(dep_id)) for dep_id in task.depends_on or []]
        if any(dep is not None and dep.is_failed for dep in deps):
            return BlockReason.FAILED_DEPENDENCY
        if any(dep is None or not dep.is_successful for dep in deps):
            return BlockReason.WAITING_FOR_DEPENDENCIES
        if release is not None and not self._upload_ready(task, release):
            return BlockReason.WAITING_FOR_UPLOAD
        return None

    def compute_eligible(self, tasks: list[Task], release=None) -> list[Task]:
        """
        Return PENDING tasks whose dependencies all COMPLETED with success.

        IN_PROGRESS and AWAITING_CALLBACK tasks are never eligible. A failed
        dependency blocks its dependents until it is retried. When ``release``
        is given, manual-upload gates are checked against the ledger.
        """
        return [
            task
            for task in tasks
            if task.status == TaskStatus.PENDING
            and self.block_reason(task, tasks, release) is None
        ]

    # ------------------------------------------------------------------
    # Stage progression
    # ------------------------------------------------------------------

    def stage_status(self, tasks: list[Task]) -> str:
        if not tasks:
            return "NOT_STARTED"
        if all(t.is_successful for t in tasks):
            return "COMPLETED"
        if any(t.is_failed for t in tasks):
            return "BLOCKED"
        if all(t.status == TaskStatus.PENDING for t in tasks):
            return "PENDING"
        return "IN_PROGRESS"

    def advance_if_complete(self, release) -> str | None:
        """Advance KICKOFF → REGRESSION or POST_REGRESSION → DONE once a stage fully succeeded."""
        transition = AUTO_ADVANCE.get(release.phase)
        if transition is None:
            return None
        tasks = self.stage_tasks(release, release.phase)
        if not tasks or not all(t.is_successful for t in tasks):
            return None
        from_phase, to_phase = transition
        if not release.advance_phase(from_phase, to_phase):
            return None
        logger.info(f"Release {release.id} advanced {from_phase} → {to_phase}")
        emit_phase_advanced(SignalTags.for_release(release), from_phase, to_phase)
        return to_phase

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def retry(self, task: Task) -> Task:
        """
        Reset a failed or stuck task to PENDING without creating a new row.

        Already-PENDING tasks are returned unchanged. Successful tasks cannot
        be retried.

        Raises:
            TaskRetryError: If the task COMPLETED with conclusion success.
        """
        if task.status == TaskStatus.PENDING:
            return task
        if task.is_successful:
            raise TaskRetryError(f"Task {task.id} already completed successfully")
        if not task.reset_for_retry():
            task.refresh_from_db()
            if task.status == TaskStatus.PENDING:
                return task
            raise TaskRetryError(f"Task {task.id} cannot be retried from {task.status}")
        logger.info(f"Task {task.id} ({task.task_type}) reset for retry, attempt {task.attempt}")
        return task
