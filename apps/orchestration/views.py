"""
Views for the orchestration app.

Provides the internal cron polling endpoints and the release task surface
(task list and retry).
"""

import logging
import uuid

from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.builds.ledger import BuildUploadLedger
from apps.orchestration.errors import TaskRetryError
from apps.orchestration.models import Stage, Task, parse_stage
from apps.orchestration.polling import PollMode, WorkflowPollingService
from apps.orchestration.sequencer import TaskSequencer
from apps.releases.approval import ApprovalGate
from apps.releases.models import CycleStatus
from apps.releases.regression import RegressionCycleManager
from apps.releases.views._mixins import JSONResponseMixin, ReleaseLookupMixin

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class PollWorkflowsView(JSONResponseMixin, ReleaseLookupMixin, View):
    """
    Internal cron endpoints reconciling a release's in-flight tasks.

    POST /internal/cron/builds/poll-pending-workflows
    POST /internal/cron/builds/poll-running-workflows

    Request body:
    {
        "releaseId": "...",  // Release to poll
        "appId": "..."       // Tenant the release belongs to
    }
    """

    mode = PollMode.RUNNING
    poller_class = WorkflowPollingService

    def post(self, request):
        body = self.parse_json_body(request)
        if body is None:
            return self.json_response({"success": False, "error": "Invalid JSON body"}, status=400)

        release_id = body.get("releaseId")
        app_id = body.get("appId")
        for field_name, value in (("releaseId", release_id), ("appId", app_id)):
            if not isinstance(value, str) or not value.strip():
                return self.json_response(
                    {"success": False, "error": f"{field_name} must be a non-empty string"},
                    status=400,
                )

        release = self.get_release(release_id, tenant_id=app_id)
        if release is None:
            return self.json_response(
                {"success": False, "error": f"Release not found: {release_id}"}, status=404
            )

        try:
            poller = self.poller_class()
            if self.mode == PollMode.PENDING:
                summary = poller.poll_pending(release)
            else:
                summary = poller.poll_running(release)
        except Exception as e:
            logger.exception(f"Poll {self.mode} workflows failed for release {release_id}")
            return self.json_response({"success": False, "error": str(e)}, status=500)

        return self.json_response({"success": True, "data": summary.to_dict()})


@method_decorator(csrf_exempt, name="dispatch")
class TaskListView(JSONResponseMixin, ReleaseLookupMixin, View):
    """
    List the tasks of a release stage.

    GET /api/releases/<release_id>/tasks?stage=KICKOFF|REGRESSION|POST_REGRESSION

    For REGRESSION the response also includes cycles, the approval status
    and uploads that are still available.
    """

    def get(self, request, release_id: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)

        requested = request.GET.get("stage")
        if requested:
            stage = parse_stage(requested)
            if stage is None:
                return self.error_response(
                    f"Invalid stage: {requested}. Expected one of {Stage.values}"
                )
        else:
            stage = release.phase if release.phase in Stage.values else Stage.POST_REGRESSION

        sequencer = TaskSequencer()
        tasks = sequencer.stage_tasks(release, stage)
        # Tasks failed by an abandoned cycle do not block the stage.
        abandoned = set(
            release.cycles.filter(status=CycleStatus.ABANDONED).values_list("id", flat=True)
        )
        live_tasks = [t for t in tasks if t.cycle_id not in abandoned]
        data = {
            "release_id": str(release.id),
            "phase": release.phase,
            "stage": stage,
            "stage_status": sequencer.stage_status(live_tasks),
            "tasks": [t.to_dict(sequencer.block_reason(t, tasks, release)) for t in tasks],
        }
        if stage == Stage.REGRESSION:
            data["cycles"] = RegressionCycleManager(sequencer=sequencer).cycle_summary(release)
            data["approval"] = ApprovalGate(sequencer=sequencer).evaluate(release).to_dict()
            data["available_uploads"] = [
                upload.to_dict() for upload in BuildUploadLedger().available(release)
            ]
        return self.json_response(data)


@method_decorator(csrf_exempt, name="dispatch")
class TaskRetryView(JSONResponseMixin, ReleaseLookupMixin, View):
    """
    Reset a failed or stuck task to PENDING.

    POST /api/releases/<release_id>/tasks/<task_id>/retry

    No-op when the task is already PENDING; 409 when it already succeeded.
    """

    def post(self, request, release_id: str, task_id: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        task = Task.objects.filter(release=release, pk=task_id).first() if _is_uuid(task_id) else None
        if task is None:
            return self.error_response(f"Task not found: {task_id}", status=404)

        try:
            task = TaskSequencer().retry(task)
        except TaskRetryError as e:
            return self.error_response(str(e), status=409)

        return self.json_response({"success": True, "task": task.to_dict()})


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True
