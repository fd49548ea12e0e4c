"""
Workflow polling service.

Completion of asynchronous work is detected by pulling provider state, never
by callbacks. Two independent reconciliation passes run every tick:

1. Pending pass: AWAITING_CALLBACK → IN_PROGRESS once the external job started.
2. Running pass: IN_PROGRESS / AWAITING_CALLBACK → COMPLETED once the job
   reached a terminal state.

Both passes are pure state reconciliation: running them twice with no
external change is a no-op, because every transition is a conditional update
on the task's current status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from apps.integrations.base import TestRunState, WorkflowState, evaluate_test_status
from apps.integrations.errors import IntegrationError
from apps.integrations.models import IntegrationKind
from apps.integrations.registry import IntegrationResolver, ResolverFactory
from apps.orchestration.dtos import PollResult, PollSummary
from apps.orchestration.models import (
    IN_FLIGHT_STATUSES,
    Task,
    TaskConclusion,
    TaskStatus,
    TaskType,
)
from apps.orchestration.signals import SignalTags, emit_poll_transition

logger = logging.getLogger(__name__)

BUILD_TASK_TYPES = (
    TaskType.TRIGGER_PRE_REGRESSION_BUILDS,
    TaskType.TRIGGER_REGRESSION_BUILDS,
    TaskType.TRIGGER_RELEASE_BUILDS,
)

POLLED_TASK_TYPES = (
    *BUILD_TASK_TYPES,
    TaskType.CREATE_TEST_RUN,
    TaskType.CHECK_PROJECT_RELEASE_APPROVAL,
)


class PollMode:
    PENDING = "pending"
    RUNNING = "running"


@dataclass
class Verdict:
    """Terminal decision for a task, derived from provider state."""

    conclusion: str
    data: dict
    error: str | None = None
    error_type: str | None = None


class WorkflowPollingService:
    """Reconciles in-flight tasks of one release against provider state."""

    def __init__(self, resolver_factory: ResolverFactory | None = None):
        self.resolver_factory = resolver_factory or IntegrationResolver

    def _tasks(self, release, statuses: list[str], skip_task_ids: Iterable[str]):
        skip = {str(task_id) for task_id in skip_task_ids}
        qs = (
            Task.objects.filter(
                release=release,
                status__in=statuses,
                task_type__in=POLLED_TASK_TYPES,
            )
            .exclude(external_id="")
            .select_related("release", "cycle")
            .order_by("created_at")
        )
        return [task for task in qs if str(task.id) not in skip]

    def _result(self, task: Task) -> PollResult:
        return PollResult(
            task_id=str(task.id),
            task_type=task.task_type,
            platform=task.platform,
            external_id=task.external_id,
            previous_status=task.status,
            status=task.status,
            conclusion=task.conclusion,
        )

    def _finish(self, task: Task, result: PollResult, moved: bool) -> None:
        if moved:
            result.changed = True
            emit_poll_transition(SignalTags.for_task(task), result.previous_status, task.status)
        else:
            task.refresh_from_db()
        result.status = task.status
        result.conclusion = task.conclusion

    # ------------------------------------------------------------------
    # Pending pass
    # ------------------------------------------------------------------

    def poll_pending(self, release, skip_task_ids: Iterable[str] = (), resolver=None) -> PollSummary:
        """
        Surface externally started jobs.

        For every AWAITING_CALLBACK task whose provider reports the job has
        started, transition to IN_PROGRESS.

        Args:
            release: Release whose tasks are reconciled.
            skip_task_ids: Tasks dispatched in the current tick; they are only
                polled on the next tick.
            resolver: Integration resolver for the release's tenant.
        """
        resolver = resolver or self.resolver_factory(release.tenant_id)
        summary = PollSummary(release_id=str(release.id), mode=PollMode.PENDING)

        for task in self._tasks(release, [TaskStatus.AWAITING_CALLBACK], skip_task_ids):
            result = self._result(task)
            try:
                started, provider_status = self._has_started(task, resolver)
            except IntegrationError as exc:
                logger.warning(f"Pending poll of task {task.id} failed: {exc}")
                result.error = str(exc)
                summary.add(result)
                continue

            result.provider_status = provider_status
            if started:
                self._finish(task, result, task.mark_in_progress({"provider_status": provider_status}))
            summary.add(result)

        logger.info(
            f"Pending poll for release {release.id}: "
            f"{summary.processed} checked, {summary.updated} updated"
        )
        return summary

    def _has_started(self, task: Task, resolver) -> tuple[bool, str | None]:
        if task.task_type in BUILD_TASK_TYPES:
            status = resolver.get(IntegrationKind.CICD).get_workflow_status(task.external_id)
            return status in WorkflowState.STARTED, status
        if task.task_type == TaskType.CREATE_TEST_RUN:
            report = resolver.get(IntegrationKind.TEST_MANAGEMENT).get_test_status(task.external_id)
            return report.status in TestRunState.STARTED, report.status
        # Tickets have no "started" notion; only the running pass handles them.
        return False, None

    # ------------------------------------------------------------------
    # Running pass
    # ------------------------------------------------------------------

    def poll_running(self, release, skip_task_ids: Iterable[str] = (), resolver=None) -> PollSummary:
        """
        Detect finished external jobs.

        For every IN_PROGRESS or AWAITING_CALLBACK task with an external id,
        query the provider's terminal state and transition to COMPLETED with
        the derived conclusion. Tasks without an external id are skipped.
        Provider errors leave the task unchanged and are reported in the
        summary.
        """
        resolver = resolver or self.resolver_factory(release.tenant_id)
        summary = PollSummary(release_id=str(release.id), mode=PollMode.RUNNING)

        for task in self._tasks(release, IN_FLIGHT_STATUSES, skip_task_ids):
            result = self._result(task)
            try:
                verdict, provider_status = self._terminal_verdict(task, release, resolver)
            except IntegrationError as exc:
                logger.warning(f"Running poll of task {task.id} failed: {exc}")
                result.error = str(exc)
                summary.add(result)
                continue

            result.provider_status = provider_status
            if verdict is not None:
                data = dict(verdict.data, provider_status=provider_status)
                if verdict.error:
                    data.update(error=verdict.error, error_type=verdict.error_type)
                moved = task.mark_completed(
                    conclusion=verdict.conclusion,
                    data=data,
                    expected=IN_FLIGHT_STATUSES,
                )
                self._finish(task, result, moved)
            summary.add(result)

        logger.info(
            f"Running poll for release {release.id}: "
            f"{summary.processed} checked, {summary.updated} updated"
        )
        return summary

    def _terminal_verdict(self, task: Task, release, resolver) -> tuple[Verdict | None, str | None]:
        if task.task_type in BUILD_TASK_TYPES:
            status = resolver.get(IntegrationKind.CICD).get_workflow_status(task.external_id)
            if status == WorkflowState.COMPLETED:
                return Verdict(TaskConclusion.SUCCESS, {}), status
            if status in WorkflowState.TERMINAL_FAILURE:
                return (
                    Verdict(
                        TaskConclusion.FAILURE,
                        {},
                        error=f"Workflow run {task.external_id} {status}",
                        error_type="WorkflowFailed",
                    ),
                    status,
                )
            return None, status

        if task.task_type == TaskType.CREATE_TEST_RUN:
            report = resolver.get(IntegrationKind.TEST_MANAGEMENT).get_test_status(task.external_id)
            if report.status == TestRunState.FAILED:
                return (
                    Verdict(
                        TaskConclusion.FAILURE,
                        report.to_dict(),
                        error=f"Test run {task.external_id} failed on the provider",
                        error_type="TestRunFailed",
                    ),
                    report.status,
                )
            if report.status != TestRunState.COMPLETED:
                return None, report.status
            evaluation = evaluate_test_status(report, release.pass_threshold)
            data = evaluation.to_dict()
            if evaluation.is_passing_threshold:
                return Verdict(TaskConclusion.SUCCESS, data), report.status
            return (
                Verdict(
                    TaskConclusion.FAILURE,
                    data,
                    error=(
                        f"Pass percentage {evaluation.pass_percentage}% is below "
                        f"threshold {evaluation.threshold}%"
                    ),
                    error_type="ThresholdNotMet",
                ),
                report.status,
            )

        if task.task_type == TaskType.CHECK_PROJECT_RELEASE_APPROVAL:
            ticket = resolver.get(IntegrationKind.PROJECT_MANAGEMENT).get_ticket_status(
                task.external_id
            )
            if ticket.is_approved:
                return Verdict(TaskConclusion.SUCCESS, {"ticket_status": ticket.status}), ticket.status
            return None, ticket.status

        return None, None
