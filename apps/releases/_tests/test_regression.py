"""Tests for regression cycle management."""

import datetime as dt
from datetime import timedelta

import pytest
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone

from apps.integrations._tests.fakes import full_resolver
from apps.integrations.errors import TransientError
from apps.integrations.models import IntegrationKind
from apps.orchestration.executors import TaskExecutor
from apps.orchestration.models import TaskStatus, TaskType
from apps.orchestration.sequencer import TaskSequencer
from apps.releases._tests.factories import make_cycle, make_release
from apps.releases.errors import CycleStateError
from apps.releases.models import (
    CycleStatus,
    RegressionCycle,
    RegressionSlot,
    ReleasePhase,
    absolute_to_offset,
    offset_to_absolute,
)
from apps.releases.regression import RegressionCycleManager


class SlotConversionTests(TestCase):
    def setUp(self):
        self.kickoff = timezone.make_aware(dt.datetime(2026, 3, 2, 9, 0))
        self.release = make_release(
            kickoff_at=self.kickoff, target_release_at=self.kickoff + timedelta(days=10)
        )

    def test_offset_and_absolute_round_trip(self):
        at = offset_to_absolute(3, dt.time(14, 30), self.kickoff)
        assert at.date() == dt.date(2026, 3, 5)
        assert absolute_to_offset(at.date(), self.kickoff) == 3

    def test_slot_converts_both_ways(self):
        by_offset = RegressionSlot(release=self.release, offset_days=2, scheduled_time=dt.time(10))
        by_date = RegressionSlot(
            release=self.release, scheduled_date=dt.date(2026, 3, 4), scheduled_time=dt.time(10)
        )

        assert by_offset.to_absolute() == (dt.date(2026, 3, 4), dt.time(10))
        assert by_date.to_offset() == (2, dt.time(10))
        assert by_offset.scheduled_at() == by_date.scheduled_at()

    def test_slot_must_fall_between_kickoff_and_target(self):
        RegressionSlot(release=self.release, offset_days=1, scheduled_time=dt.time(10)).clean()
        with pytest.raises(ValidationError):
            RegressionSlot(release=self.release, offset_days=30, scheduled_time=dt.time(10)).clean()
        with pytest.raises(ValidationError):
            RegressionSlot(release=self.release, scheduled_time=dt.time(10)).clean()


class CycleCreationTests(TestCase):
    def setUp(self):
        self.resolver = full_resolver()
        self.manager = RegressionCycleManager(
            sequencer=TaskSequencer(resolver_factory=self.resolver.factory),
            resolver_factory=self.resolver.factory,
        )
        self.now = timezone.now()
        self.release = make_release(
            phase=ReleasePhase.REGRESSION,
            kickoff_at=self.now - timedelta(days=2),
            target_release_at=self.now + timedelta(days=10),
        )

    def add_slot(self, offset_days, hour=9):
        return RegressionSlot.objects.create(
            release=self.release, offset_days=offset_days, scheduled_time=dt.time(hour)
        )

    def test_release_without_slots_gets_one_cycle(self):
        cycle = self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver)

        assert cycle.number == 1
        assert cycle.status == CycleStatus.NOT_STARTED
        assert cycle.tasks.filter(task_type=TaskType.CREATE_REGRESSION_CYCLE).count() == 1
        assert self.manager.current_cycle(self.release) == cycle
        # No second unslotted cycle once one exists.
        cycle.mark_abandoned()
        assert self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver) is None

    def test_due_slot_is_consumed_once(self):
        slot = self.add_slot(offset_days=0)
        cycle = self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver)

        slot.refresh_from_db()
        assert cycle.slot_id == slot.id
        assert slot.consumed_at is not None
        assert self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver) is None
        assert RegressionCycle.objects.filter(release=self.release).count() == 1

    def test_future_slot_is_not_due(self):
        self.add_slot(offset_days=5)
        assert self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver) is None

    def test_no_slot_starts_after_target_date(self):
        slot = self.add_slot(offset_days=0)
        late = self.release.target_release_at

        assert self.manager.due_slot(self.release, late) is None
        assert self.manager.start_due_cycle(self.release, late, resolver=self.resolver) is None
        slot.refresh_from_db()
        assert slot.consumed_at is None
        assert not RegressionCycle.objects.filter(release=self.release).exists()

    def test_next_slot_waits_for_current_cycle(self):
        self.add_slot(offset_days=0)
        self.add_slot(offset_days=1)
        first = self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver)
        assert self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver) is None

        first.mark_started()
        first.mark_done()
        second = self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver)
        assert second.number == 2

    def test_no_cycles_outside_regression(self):
        self.release.phase = ReleasePhase.KICKOFF
        assert self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver) is None

    def test_reconcile_marks_cycle_done_when_all_tasks_succeed(self):
        cycle = self.manager.start_due_cycle(self.release, self.now, resolver=self.resolver)
        cycle.mark_started()
        assert self.manager.reconcile(self.release) is None

        for task in cycle.tasks.all():
            task.claim()
            task.mark_completed()

        done = self.manager.reconcile(self.release)
        assert done.pk == cycle.pk
        cycle.refresh_from_db()
        assert cycle.status == CycleStatus.DONE
        assert self.manager.current_cycle(self.release) is None


class AbandonCycleTests(TestCase):
    def setUp(self):
        self.resolver = full_resolver()
        self.sequencer = TaskSequencer(resolver_factory=self.resolver.factory)
        self.manager = RegressionCycleManager(
            sequencer=self.sequencer, resolver_factory=self.resolver.factory
        )
        self.release = make_release(phase=ReleasePhase.REGRESSION)
        self.cycle = make_cycle(self.release)
        self.tasks = self.sequencer.ensure_stage_tasks(
            self.release, "REGRESSION", cycle=self.cycle, resolver=self.resolver
        )

    def test_abandon_fails_open_tasks_and_cancels_test_runs(self):
        run_task = next(t for t in self.tasks if t.task_type == TaskType.CREATE_TEST_RUN)
        TaskExecutor(resolver_factory=self.resolver.factory).dispatch(run_task, resolver=self.resolver)
        run_task.refresh_from_db()

        self.manager.abandon_cycle(self.cycle, resolver=self.resolver)

        self.cycle.refresh_from_db()
        assert self.cycle.status == CycleStatus.ABANDONED
        statuses = set(self.cycle.tasks.values_list("status", flat=True))
        assert statuses == {TaskStatus.FAILED}
        tm = self.resolver.get(IntegrationKind.TEST_MANAGEMENT)
        assert tm.cancelled == [run_task.external_id]

    def test_cancel_failure_does_not_block_abandon(self):
        run_task = next(t for t in self.tasks if t.task_type == TaskType.CREATE_TEST_RUN)
        TaskExecutor(resolver_factory=self.resolver.factory).dispatch(run_task, resolver=self.resolver)
        self.resolver.get(IntegrationKind.TEST_MANAGEMENT).fail_with = TransientError("down")

        cycle = self.manager.abandon_cycle(self.cycle, resolver=self.resolver)
        assert cycle.status == CycleStatus.ABANDONED

    def test_finished_cycle_cannot_be_abandoned(self):
        self.cycle.mark_started()
        self.cycle.mark_done()
        with pytest.raises(CycleStateError):
            self.manager.abandon_cycle(self.cycle, resolver=self.resolver)

    def test_summary_lists_cycles(self):
        summary = self.manager.cycle_summary(self.release)
        assert summary[0]["number"] == 1
        assert summary[0]["is_current"] is True
        assert summary[0]["task_count"] == len(self.tasks)
