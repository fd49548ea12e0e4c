"""
Regression cycle manager.

Creates regression cycles when their slot comes due, closes cycles whose
tasks all succeeded and abandons cycles on request. The "current" cycle is
always derived from cycle rows, never stored.
"""

from __future__ import annotations

import logging
from datetime import datetime

from django.db import transaction
from django.utils import timezone

from apps.integrations.errors import IntegrationError
from apps.integrations.models import IntegrationKind
from apps.integrations.registry import IntegrationResolver, ResolverFactory
from apps.orchestration.models import Stage, Task, TaskStatus, TaskType
from apps.orchestration.sequencer import TaskSequencer
from apps.releases.errors import CycleStateError
from apps.releases.models import CycleStatus, RegressionCycle, RegressionSlot, ReleasePhase

logger = logging.getLogger(__name__)


class RegressionCycleManager:
    """Creates, reconciles and abandons regression cycles."""

    def __init__(
        self,
        sequencer: TaskSequencer | None = None,
        resolver_factory: ResolverFactory | None = None,
    ):
        self.resolver_factory = resolver_factory or IntegrationResolver
        self.sequencer = sequencer or TaskSequencer(resolver_factory=self.resolver_factory)

    def current_cycle(self, release) -> RegressionCycle | None:
        return RegressionCycle.objects.current_for(release)

    def latest_cycle(self, release) -> RegressionCycle | None:
        return RegressionCycle.objects.latest_for(release)

    def due_slot(self, release, now: datetime | None = None) -> RegressionSlot | None:
        """Earliest unconsumed slot whose start time has passed, never past the target date."""
        now = now or timezone.now()
        if now >= release.target_release_at:
            return None
        slots = release.regression_slots.filter(consumed_at__isnull=True)
        due = [slot for slot in slots if slot.scheduled_at(release.kickoff_at) <= now]
        return min(due, key=lambda s: s.scheduled_at(release.kickoff_at), default=None)

    def start_due_cycle(self, release, now: datetime | None = None, resolver=None):
        """
        Create the next cycle if one is due and none is current.

        A slot is consumed atomically with cycle creation so two overlapping
        ticks cannot both create a cycle for it. A release with no slots at
        all gets a single unslotted cycle.

        Returns:
            The new RegressionCycle, or None.
        """
        if release.phase != ReleasePhase.REGRESSION:
            return None
        if self.current_cycle(release) is not None:
            return None

        now = now or timezone.now()
        slot = self.due_slot(release, now)
        if slot is None:
            if release.regression_slots.exists() or release.cycles.exists():
                return None

        with transaction.atomic():
            if slot is not None:
                consumed = RegressionSlot.objects.filter(
                    pk=slot.pk, consumed_at__isnull=True
                ).update(consumed_at=now)
                if not consumed:
                    return None
            cycle = RegressionCycle.objects.create(
                release=release,
                slot=slot,
                number=RegressionCycle.objects.next_number(release),
            )

        self.sequencer.ensure_stage_tasks(release, Stage.REGRESSION, cycle=cycle, resolver=resolver)
        logger.info(f"Created regression cycle {cycle.number} for release {release.id}")
        return cycle

    def reconcile(self, release) -> RegressionCycle | None:
        """Mark the IN_PROGRESS cycle DONE once every one of its tasks succeeded."""
        cycle = self.current_cycle(release)
        if cycle is None or cycle.status != CycleStatus.IN_PROGRESS:
            return None
        tasks = list(cycle.tasks.all())
        if not tasks or not all(t.is_successful for t in tasks):
            return None
        if cycle.mark_done():
            logger.info(f"Regression cycle {cycle.number} of release {release.id} is done")
            return cycle
        return None

    def abandon_cycle(self, cycle: RegressionCycle, resolver=None) -> RegressionCycle:
        """
        Abandon a NOT_STARTED or IN_PROGRESS cycle.

        Unfinished tasks of the cycle are failed and in-flight test runs are
        cancelled on the provider, best effort.

        Raises:
            CycleStateError: If the cycle is already DONE or ABANDONED.
        """
        if not cycle.mark_abandoned():
            cycle.refresh_from_db()
            raise CycleStateError(f"Cycle {cycle.number} cannot be abandoned from {cycle.status}")

        resolver = resolver or self.resolver_factory(cycle.release.tenant_id)
        for task in cycle.tasks.filter(
            status__in=[TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.AWAITING_CALLBACK]
        ):
            external_id = task.external_id
            if not task.mark_failed("Regression cycle abandoned", "CycleAbandoned", expected=[task.status]):
                continue
            if task.task_type == TaskType.CREATE_TEST_RUN and external_id:
                self._cancel_test_run(external_id, resolver)

        logger.info(f"Abandoned regression cycle {cycle.number} of release {cycle.release_id}")
        return cycle

    def _cancel_test_run(self, run_id: str, resolver) -> None:
        if not resolver.has(IntegrationKind.TEST_MANAGEMENT):
            return
        try:
            resolver.get(IntegrationKind.TEST_MANAGEMENT).cancel_test_run(run_id)
        except IntegrationError as exc:
            logger.warning(f"Could not cancel test run {run_id}: {exc}")

    def cycle_summary(self, release) -> list[dict]:
        current = self.current_cycle(release)
        return [
            {
                "id": str(cycle.id),
                "number": cycle.number,
                "status": cycle.status,
                "tag": cycle.tag or None,
                "is_current": current is not None and cycle.pk == current.pk,
                "created_at": cycle.created_at.isoformat(),
                "completed_at": cycle.completed_at.isoformat() if cycle.completed_at else None,
                "task_count": Task.objects.filter(cycle=cycle).count(),
            }
            for cycle in release.cycles.order_by("number")
        ]
