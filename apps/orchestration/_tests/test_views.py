"""Tests for orchestration views."""

import json
import uuid
from unittest.mock import patch

from django.test import Client, TestCase

from apps.integrations._tests.fakes import full_resolver
from apps.integrations.base import WorkflowState
from apps.integrations.models import IntegrationKind
from apps.orchestration.executors import TaskExecutor
from apps.orchestration.models import Stage, TaskStatus, TaskType
from apps.orchestration.polling import WorkflowPollingService
from apps.orchestration.sequencer import BlockReason, TaskSequencer
from apps.releases._tests.factories import make_cycle, make_release
from apps.releases.models import ReleasePhase
from apps.releases.regression import RegressionCycleManager

PENDING_URL = "/internal/cron/builds/poll-pending-workflows"
RUNNING_URL = "/internal/cron/builds/poll-running-workflows"


class TestPollWorkflowsView(TestCase):
    """Tests for the internal cron polling endpoints."""

    def setUp(self):
        self.client = Client()
        self.release = make_release()

    def post(self, url, body):
        return self.client.post(url, data=json.dumps(body), content_type="application/json")

    def test_invalid_json(self):
        """Test that a malformed body is rejected."""
        response = self.client.post(RUNNING_URL, data="not json", content_type="application/json")

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_missing_or_blank_fields(self):
        """Test that releaseId and appId must be non-empty strings."""
        for body in (
            {"appId": "tenant-1"},
            {"releaseId": str(self.release.id)},
            {"releaseId": "  ", "appId": "tenant-1"},
            {"releaseId": str(self.release.id), "appId": 42},
        ):
            response = self.post(PENDING_URL, body)
            assert response.status_code == 400, body

    def test_unknown_release(self):
        """Test 404 for an unknown release or a release of another tenant."""
        response = self.post(RUNNING_URL, {"releaseId": str(uuid.uuid4()), "appId": "tenant-1"})
        assert response.status_code == 404

        response = self.post(RUNNING_URL, {"releaseId": str(self.release.id), "appId": "other"})
        assert response.status_code == 404

    def test_poll_running_success(self):
        """Test that a finished CI run is reconciled through the endpoint."""
        resolver = full_resolver()
        release = make_release(version="1.3.0", config={"pre_regression_builds": True})
        tasks = TaskSequencer(resolver_factory=resolver.factory).ensure_stage_tasks(
            release, Stage.KICKOFF, resolver=resolver
        )
        build = next(t for t in tasks if t.task_type == TaskType.TRIGGER_PRE_REGRESSION_BUILDS)
        TaskExecutor(resolver_factory=resolver.factory).dispatch(build, resolver=resolver)
        build.refresh_from_db()
        resolver.get(IntegrationKind.CICD).runs[build.external_id] = WorkflowState.COMPLETED

        with patch("apps.orchestration.polling.IntegrationResolver", resolver.factory):
            response = self.post(RUNNING_URL, {"releaseId": str(release.id), "appId": "tenant-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["mode"] == "running"
        assert data["data"]["updated"] == 1
        build.refresh_from_db()
        assert build.is_successful

    def test_poll_pending_with_nothing_in_flight(self):
        """Test that the pending pass succeeds with nothing to do."""
        response = self.post(PENDING_URL, {"releaseId": str(self.release.id), "appId": "tenant-1"})

        assert response.status_code == 200
        assert response.json()["data"]["mode"] == "pending"
        assert response.json()["data"]["processed"] == 0

    def test_unexpected_error_returns_500(self):
        """Test that poller failures are reported as 500."""
        with patch.object(
            WorkflowPollingService, "poll_running", side_effect=RuntimeError("db gone")
        ):
            response = self.post(
                RUNNING_URL, {"releaseId": str(self.release.id), "appId": "tenant-1"}
            )

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "db gone"}


class TestTaskListView(TestCase):
    """Tests for the stage task list."""

    def setUp(self):
        self.client = Client()
        self.resolver = full_resolver()
        self.sequencer = TaskSequencer(resolver_factory=self.resolver.factory)

    def url(self, release_id, stage=None):
        url = f"/api/releases/{release_id}/tasks"
        return f"{url}?stage={stage}" if stage else url

    def test_defaults_to_current_phase(self):
        release = make_release()
        self.sequencer.ensure_stage_tasks(release, Stage.KICKOFF, resolver=self.resolver)

        response = self.client.get(self.url(release.id))

        assert response.status_code == 200
        data = response.json()
        assert data["stage"] == Stage.KICKOFF
        assert data["stage_status"] == "PENDING"
        by_type = {t["task_type"]: t for t in data["tasks"]}
        assert by_type[TaskType.FORK_BRANCH]["block_reason"] is None
        assert (
            by_type[TaskType.CREATE_PROJECT_MANAGEMENT_TICKET]["block_reason"]
            == BlockReason.WAITING_FOR_DEPENDENCIES
        )
        assert "cycles" not in data

    def test_regression_includes_cycles_and_approval(self):
        release = make_release(phase=ReleasePhase.REGRESSION)
        cycle = make_cycle(release)
        self.sequencer.ensure_stage_tasks(
            release, Stage.REGRESSION, cycle=cycle, resolver=self.resolver
        )

        response = self.client.get(self.url(release.id, "regression"))

        assert response.status_code == 200
        data = response.json()
        assert data["stage"] == Stage.REGRESSION
        assert data["cycles"][0]["id"] == str(cycle.id)
        assert data["approval"]["can_approve"] is False
        assert data["available_uploads"] == []
        assert len(data["tasks"]) > 0

    def test_abandoned_cycle_does_not_block_regression_stage(self):
        release = make_release(phase=ReleasePhase.REGRESSION)
        first = make_cycle(release)
        self.sequencer.ensure_stage_tasks(
            release, Stage.REGRESSION, cycle=first, resolver=self.resolver
        )
        RegressionCycleManager(sequencer=self.sequencer).abandon_cycle(first, resolver=self.resolver)
        second = make_cycle(release)
        self.sequencer.ensure_stage_tasks(
            release, Stage.REGRESSION, cycle=second, resolver=self.resolver
        )

        data = self.client.get(self.url(release.id, "REGRESSION")).json()

        assert data["stage_status"] == "PENDING"
        failed = [t for t in data["tasks"] if t["status"] == TaskStatus.FAILED]
        assert failed and all(t["cycle_id"] == str(first.id) for t in failed)

    def test_invalid_stage(self):
        release = make_release()
        response = self.client.get(self.url(release.id, "launch"))

        assert response.status_code == 400
        assert "Invalid stage" in response.json()["error"]

    def test_unknown_release(self):
        response = self.client.get(self.url(uuid.uuid4()))
        assert response.status_code == 404

        response = self.client.get(self.url("not-a-uuid"))
        assert response.status_code == 404


class TestTaskRetryView(TestCase):
    """Tests for the task retry endpoint."""

    def setUp(self):
        self.client = Client()
        self.resolver = full_resolver()
        self.release = make_release()
        tasks = TaskSequencer(resolver_factory=self.resolver.factory).ensure_stage_tasks(
            self.release, Stage.KICKOFF, resolver=self.resolver
        )
        self.fork = next(t for t in tasks if t.task_type == TaskType.FORK_BRANCH)

    def url(self, task_id):
        return f"/api/releases/{self.release.id}/tasks/{task_id}/retry"

    def test_failed_task_is_reset(self):
        self.fork.claim()
        self.fork.mark_failed("boom", "TransientError")

        response = self.client.post(self.url(self.fork.id))

        assert response.status_code == 200
        assert response.json()["task"]["status"] == TaskStatus.PENDING
        self.fork.refresh_from_db()
        assert self.fork.status == TaskStatus.PENDING
        assert self.fork.attempt == 2

    def test_pending_task_is_a_noop(self):
        response = self.client.post(self.url(self.fork.id))

        assert response.status_code == 200
        assert response.json()["task"]["attempt"] == 1

    def test_successful_task_conflicts(self):
        self.fork.claim()
        self.fork.mark_completed()

        response = self.client.post(self.url(self.fork.id))
        assert response.status_code == 409

    def test_unknown_task(self):
        assert self.client.post(self.url(uuid.uuid4())).status_code == 404
        assert self.client.post(self.url("nope")).status_code == 404
