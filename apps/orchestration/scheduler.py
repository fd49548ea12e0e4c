"""
Release scheduler.

The top-level tick: for each active release, take the release lock and run
sequencing → dispatch → polling → regression cycle management → phase
advancement, in that order, then drop the lock.

Every step is individually idempotent, so a tick that dies midway is simply
resumed by the next tick once the lease expires.
"""

from __future__ import annotations

import logging
from datetime import datetime

from django.utils import timezone

from apps.integrations.registry import IntegrationResolver, ResolverFactory
from apps.orchestration.dtos import TickResult
from apps.orchestration.executors import TaskExecutor
from apps.orchestration.locks import LockService
from apps.orchestration.models import Stage
from apps.orchestration.polling import WorkflowPollingService
from apps.orchestration.sequencer import TaskSequencer
from apps.orchestration.signals import SignalTags, emit_lock_busy
from apps.releases.models import Release, ReleasePhase
from apps.releases.regression import RegressionCycleManager

logger = logging.getLogger(__name__)


class ReleaseScheduler:
    """Runs one orchestration tick across all active releases."""

    def __init__(
        self,
        lock_service: LockService | None = None,
        sequencer: TaskSequencer | None = None,
        executor: TaskExecutor | None = None,
        poller: WorkflowPollingService | None = None,
        cycle_manager: RegressionCycleManager | None = None,
        resolver_factory: ResolverFactory | None = None,
    ):
        self.resolver_factory = resolver_factory or IntegrationResolver
        self.lock_service = lock_service or LockService()
        self.sequencer = sequencer or TaskSequencer(resolver_factory=self.resolver_factory)
        self.executor = executor or TaskExecutor(resolver_factory=self.resolver_factory)
        self.poller = poller or WorkflowPollingService(resolver_factory=self.resolver_factory)
        self.cycle_manager = cycle_manager or RegressionCycleManager(
            sequencer=self.sequencer, resolver_factory=self.resolver_factory
        )

    def active_releases(self, now: datetime | None = None):
        now = now or timezone.now()
        return (
            Release.objects.exclude(phase=ReleasePhase.DONE)
            .filter(is_archived=False, aborted_at__isnull=True, kickoff_at__lte=now)
            .order_by("kickoff_at")
        )

    def tick(self, now: datetime | None = None) -> list[TickResult]:
        """Process every active release once. One release failing never stops the others."""
        now = now or timezone.now()
        results = []
        for release in self.active_releases(now):
            try:
                results.append(self.process_release(release, now))
            except Exception as exc:
                logger.exception(f"Scheduler tick failed for release {release.id}")
                results.append(
                    TickResult(release_id=str(release.id), phase=release.phase, error=str(exc))
                )
        return results

    def process_release(self, release: Release, now: datetime | None = None) -> TickResult:
        """Advance a single release as far as it can go this tick."""
        now = now or timezone.now()
        result = TickResult(release_id=str(release.id), phase=release.phase)

        lease = self.lock_service.acquire(release.id, now=now)
        if lease is None:
            emit_lock_busy(SignalTags.for_release(release))
            logger.info(f"Release {release.id} is locked by another scheduler; skipping")
            return result

        result.acquired = True
        try:
            release.refresh_from_db()
            result.phase = release.phase
            if release.phase == ReleasePhase.DONE or release.is_aborted:
                return result
            resolver = self.resolver_factory(release.tenant_id)

            # 1. Sequencing
            tasks = self._stage_tasks(release, resolver, result)

            # 2. Dispatch
            eligible = self.sequencer.compute_eligible(tasks, release)
            for task in eligible:
                result.dispatched.append(self.executor.dispatch(task, resolver=resolver))
            dispatched_ids = {d.task_id for d in result.dispatched if d.dispatched}

            # 3. Polling (tasks dispatched this tick are polled next tick)
            result.pending_poll = self.poller.poll_pending(release, dispatched_ids, resolver)
            result.running_poll = self.poller.poll_running(release, dispatched_ids, resolver)

            # 4. Regression cycles
            if release.phase == ReleasePhase.REGRESSION:
                done = self.cycle_manager.reconcile(release)
                if done is not None:
                    result.cycle_completed = str(done.id)
                started = self.cycle_manager.start_due_cycle(release, now, resolver=resolver)
                if started is not None:
                    result.cycle_started = str(started.id)

            # 5. Phase advancement
            result.phase_advanced_to = self.sequencer.advance_if_complete(release)
            result.phase = release.phase
        finally:
            self.lock_service.release(lease)

        return result

    def _stage_tasks(self, release: Release, resolver, result: TickResult):
        if release.phase == ReleasePhase.REGRESSION:
            cycle = self.cycle_manager.current_cycle(release)
            if cycle is None:
                return []
            return self.sequencer.stage_tasks(release, Stage.REGRESSION, cycle=cycle)

        before = release.tasks.filter(stage=release.phase).count()
        self.sequencer.ensure_stage_tasks(release, release.phase, resolver=resolver)
        tasks = self.sequencer.stage_tasks(release, release.phase)
        result.tasks_created = len(tasks) - before
        return tasks
