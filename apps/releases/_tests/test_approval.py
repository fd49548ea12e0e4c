"""Tests for the regression approval gate."""

import datetime as dt
from unittest.mock import patch

import pytest
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from apps.integrations._tests.fakes import FakeResolver, FakeSCM, full_resolver
from apps.integrations.base import RefInfo
from apps.integrations.errors import NotFoundError
from apps.integrations.models import IntegrationKind
from apps.orchestration.models import Stage, Task, TaskConclusion, TaskType
from apps.orchestration.sequencer import TaskSequencer
from apps.releases._tests.factories import make_cycle, make_release
from apps.releases.approval import ApprovalGate, ApprovalStatus, resolve_tag_commit
from apps.releases.errors import ApprovalNotAllowed
from apps.releases.models import CycleStatus, Platform, RegressionSlot, ReleasePhase


class ResolveTagCommitTests(SimpleTestCase):
    def setUp(self):
        self.scm = FakeSCM()

    def test_lightweight_tag(self):
        self.scm.refs["tags/v1"] = RefInfo(sha="c1")
        assert resolve_tag_commit(self.scm, "v1") == "c1"

    def test_annotated_tag_dereferenced_once(self):
        self.scm.refs["tags/v1"] = RefInfo(sha="t1", object_type="tag")
        self.scm.tag_objects["t1"] = RefInfo(sha="c1")
        assert resolve_tag_commit(self.scm, "v1") == "c1"

    def test_annotated_tag_dereferenced_twice(self):
        self.scm.refs["tags/v1"] = RefInfo(sha="t1", object_type="tag")
        self.scm.tag_objects["t1"] = RefInfo(sha="t2", object_type="tag")
        self.scm.tag_objects["t2"] = RefInfo(sha="c1")
        assert resolve_tag_commit(self.scm, "v1") == "c1"

    def test_third_level_tag_is_rejected(self):
        self.scm.refs["tags/v1"] = RefInfo(sha="t1", object_type="tag")
        self.scm.tag_objects["t1"] = RefInfo(sha="t2", object_type="tag")
        self.scm.tag_objects["t2"] = RefInfo(sha="t3", object_type="tag")
        with pytest.raises(NotFoundError):
            resolve_tag_commit(self.scm, "v1")

    def test_missing_tag(self):
        with pytest.raises(NotFoundError):
            resolve_tag_commit(self.scm, "v1")


class ApprovalStatusTests(SimpleTestCase):
    def test_can_approve_requires_all_three_checks(self):
        for tests_ok in (True, False):
            for clean in (True, False):
                for cycles in (True, False):
                    status = ApprovalStatus(tests_ok, clean, cycles)
                    assert status.can_approve is (tests_ok and clean and cycles)
                    assert status.to_dict()["can_approve"] is status.can_approve


class ApprovalGateTests(TestCase):
    def setUp(self):
        self.resolver = full_resolver()
        self.scm = self.resolver.get(IntegrationKind.SCM)
        self.sequencer = TaskSequencer(resolver_factory=self.resolver.factory)
        self.gate = ApprovalGate(sequencer=self.sequencer, resolver_factory=self.resolver.factory)
        self.release = make_release(phase=ReleasePhase.REGRESSION, release_tag="v1.2.0-rc1")
        self.scm.branches[self.release.branch] = "head-sha"
        self.scm.refs["tags/v1.2.0-rc1"] = RefInfo(sha="head-sha")
        self.cycle = make_cycle(self.release, status=CycleStatus.DONE)

    def add_test_run(self, platform, conclusion, cycle=None):
        cycle = cycle or self.cycle
        task = Task.objects.create(
            release=self.release,
            cycle=cycle,
            stage=Stage.REGRESSION,
            task_type=TaskType.CREATE_TEST_RUN,
            platform=platform,
            identity_key=Task.build_identity_key(
                self.release.id, Stage.REGRESSION, cycle.id, TaskType.CREATE_TEST_RUN, platform
            ),
        )
        task.claim()
        task.mark_completed(conclusion=conclusion)
        return task

    def pass_all_test_runs(self):
        for platform in (Platform.ANDROID, Platform.IOS):
            self.add_test_run(platform, TaskConclusion.SUCCESS)

    def test_gate_open_when_everything_passes(self):
        self.pass_all_test_runs()
        status = self.gate.evaluate(self.release, self.resolver)

        assert status.test_management_passed
        assert status.cherry_pick_clean
        assert status.cycles_completed
        assert status.can_approve

    def test_cherry_pick_detected_when_head_moved(self):
        self.scm.branches[self.release.branch] = "newer-sha"
        clean, details = self.gate.check_cherry_pick(self.release, self.resolver)

        assert clean is False
        assert details["head_sha"] == "newer-sha"

    def test_cherry_pick_check_with_annotated_tag(self):
        self.scm.refs["tags/v1.2.0-rc1"] = RefInfo(sha="tag-obj", object_type="tag")
        self.scm.tag_objects["tag-obj"] = RefInfo(sha="head-sha")
        assert self.gate.check_cherry_pick(self.release, self.resolver)[0] is True

    def test_cherry_pick_lookup_failure_blocks(self):
        del self.scm.refs["tags/v1.2.0-rc1"]
        assert self.gate.check_cherry_pick(self.release, self.resolver)[0] is False

    def test_cherry_pick_unexpected_error_blocks(self):
        with patch.object(self.scm, "get_branch_head", side_effect=RuntimeError("bug")):
            assert self.gate.check_cherry_pick(self.release, self.resolver)[0] is False

    def test_cherry_pick_without_tag_blocks(self):
        self.release.release_tag = ""
        assert self.gate.check_cherry_pick(self.release, self.resolver)[0] is False

    def test_test_management_passes_when_not_configured(self):
        resolver = FakeResolver({IntegrationKind.SCM: self.scm})
        assert self.gate.check_test_management(self.release, resolver)[0] is True

    def test_test_management_uses_latest_run_per_platform(self):
        self.add_test_run(Platform.ANDROID, TaskConclusion.FAILURE)
        self.add_test_run(Platform.IOS, TaskConclusion.SUCCESS)
        assert self.gate.check_test_management(self.release, self.resolver)[0] is False

        second = make_cycle(self.release, status=CycleStatus.DONE)
        self.add_test_run(Platform.ANDROID, TaskConclusion.SUCCESS, cycle=second)
        assert self.gate.check_test_management(self.release, self.resolver)[0] is True

    def test_abandoned_cycle_runs_are_ignored(self):
        self.pass_all_test_runs()
        abandoned = make_cycle(self.release, status=CycleStatus.ABANDONED)
        self.add_test_run(Platform.ANDROID, TaskConclusion.FAILURE, cycle=abandoned)

        assert self.gate.check_test_management(self.release, self.resolver)[0] is True
        assert self.gate.check_cycles(self.release)[0] is True

    def test_open_cycle_blocks(self):
        make_cycle(self.release)
        assert self.gate.check_cycles(self.release)[0] is False

    def test_no_cycles_blocks(self):
        self.cycle.delete()
        assert self.gate.check_cycles(self.release)[0] is False

    def test_scheduled_slot_blocks_approval(self):
        self.pass_all_test_runs()
        RegressionSlot.objects.create(
            release=self.release, offset_days=5, scheduled_time=dt.time(9)
        )

        status = self.gate.evaluate(self.release, self.resolver)

        assert status.cycles_completed is False
        assert status.can_approve is False
        assert status.details["cycles"]["upcoming_slots"] == 1
        with pytest.raises(ApprovalNotAllowed):
            self.gate.approve(self.release, self.resolver)

    def test_consumed_slot_does_not_block(self):
        RegressionSlot.objects.create(
            release=self.release,
            offset_days=0,
            scheduled_time=dt.time(9),
            consumed_at=timezone.now(),
        )
        completed, details = self.gate.check_cycles(self.release)

        assert completed is True
        assert details["upcoming_slots"] == 0

    def test_approve_advances_and_seeds_post_regression(self):
        self.pass_all_test_runs()
        self.gate.approve(self.release, self.resolver)

        self.release.refresh_from_db()
        assert self.release.phase == ReleasePhase.POST_REGRESSION
        post = Task.objects.filter(release=self.release, stage=Stage.POST_REGRESSION)
        assert post.filter(task_type=TaskType.CREATE_RELEASE_TAG).exists()

    def test_approve_rejected_when_gate_closed(self):
        with pytest.raises(ApprovalNotAllowed) as excinfo:
            self.gate.approve(self.release, self.resolver)

        assert excinfo.value.status.test_management_passed is False
        self.release.refresh_from_db()
        assert self.release.phase == ReleasePhase.REGRESSION

    def test_approve_is_rejected_outside_regression(self):
        self.pass_all_test_runs()
        self.gate.approve(self.release, self.resolver)
        with pytest.raises(ApprovalNotAllowed):
            self.gate.approve(self.release, self.resolver)
