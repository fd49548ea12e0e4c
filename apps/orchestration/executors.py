"""
Task executors.

Each handler wraps one provider capability and returns a TaskOutcome.
Handlers never wait on external work: asynchronous providers return a job id
and the task is left AWAITING_CALLBACK for the polling service.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from django.db import transaction

from apps.builds.errors import BuildUploadError
from apps.builds.ledger import BuildUploadLedger
from apps.integrations.errors import ConflictError, IntegrationError, NotFoundError
from apps.integrations.models import IntegrationKind
from apps.integrations.registry import IntegrationResolver, ResolverFactory
from apps.orchestration.dtos import DispatchResult, OutcomeKind, TaskContext, TaskOutcome
from apps.orchestration.errors import UnknownTaskType
from apps.orchestration.models import Stage, Task, TaskType
from apps.orchestration.sequencer import TASK_SPECS
from apps.orchestration.signals import (
    SignalTags,
    emit_task_awaiting,
    emit_task_failed,
    emit_task_started,
    emit_task_succeeded,
)
from apps.releases.models import CycleStatus

logger = logging.getLogger(__name__)


def ensure_tag(scm, tag: str, target: str) -> tuple[str, bool]:
    """
    Create ``tag`` on ``target`` unless its ref already exists.

    Returns:
        (tag name, created) where created is False when the ref existed.
    """
    try:
        scm.get_ref(f"tags/{tag}")
    except NotFoundError:
        logger.debug(f"Tag {tag} not found; creating it on {target}")
    else:
        return tag, False
    try:
        scm.create_tag(tag, target)
    except ConflictError:
        logger.info(f"Tag {tag} already exists; treating as created")
        return tag, False
    return tag, True


class BaseExecutor(ABC):
    """Base class for task handlers."""

    integration_kind: str | None = None

    def required_kind(self, ctx: TaskContext) -> str | None:
        """Integration kind the handler needs for this task, if any."""
        return self.integration_kind

    @abstractmethod
    def execute(self, ctx: TaskContext) -> TaskOutcome:
        """Run the handler once and return an outcome."""
        raise NotImplementedError


class ForkBranchExecutor(BaseExecutor):
    """Fork the release branch from its base. Idempotent if the branch exists."""

    integration_kind = IntegrationKind.SCM

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        release = ctx.release
        if ctx.provider.branch_exists(release.branch):
            return TaskOutcome.completed(branch=release.branch, already_existed=True)
        sha = ctx.provider.fork_branch(release.branch, release.base_branch)
        return TaskOutcome.completed(branch=release.branch, base_branch=release.base_branch, sha=sha)


class CreateTicketExecutor(BaseExecutor):
    """Open the release ticket in the project-management tool."""

    integration_kind = IntegrationKind.PROJECT_MANAGEMENT

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        release = ctx.release
        title = f"Release {release.version}"
        description = (
            f"Release branch {release.branch} targeting {release.target_release_at:%Y-%m-%d}. "
            f"Platforms: {', '.join(release.platforms or [])}."
        )
        key = ctx.provider.create_ticket(title, description)
        return TaskOutcome.completed(ticket_key=key)


class TriggerBuildsExecutor(BaseExecutor):
    """
    Produce a platform build for the task's stage.

    CI/CD mode starts a workflow run and awaits it. Manual mode consumes the
    platform's staged upload synchronously.
    """

    BUILD_TYPES = {
        TaskType.TRIGGER_PRE_REGRESSION_BUILDS: "pre_regression",
        TaskType.TRIGGER_REGRESSION_BUILDS: "regression",
        TaskType.TRIGGER_RELEASE_BUILDS: "release",
    }

    def required_kind(self, ctx: TaskContext) -> str | None:
        return None if ctx.release.manual_build_upload else IntegrationKind.CICD

    def build_ref(self, ctx: TaskContext) -> str:
        if ctx.task.task_type == TaskType.TRIGGER_REGRESSION_BUILDS and ctx.cycle is not None:
            return ctx.cycle.tag or ctx.release.branch
        if ctx.task.task_type == TaskType.TRIGGER_RELEASE_BUILDS and ctx.release.release_tag:
            return ctx.release.release_tag
        return ctx.release.branch

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        task, release = ctx.task, ctx.release
        build_type = self.BUILD_TYPES[task.task_type]

        if release.manual_build_upload:
            upload_stage = TASK_SPECS[task.task_type].upload_stage or task.stage
            upload = ctx.ledger.consume_platform(
                release, upload_stage, task.platform, task=task, cycle=ctx.cycle
            )
            return TaskOutcome.completed(
                upload_id=str(upload.id),
                artifact_path=upload.artifact_path,
                testflight_number=upload.testflight_number or None,
                build_type=build_type,
            )

        ref = self.build_ref(ctx)
        run_id = ctx.provider.trigger_workflow(
            platform=task.platform,
            build_type=build_type,
            ref=ref,
            inputs={"version": release.version, "platform": task.platform},
        )
        return TaskOutcome.awaiting(run_id, ref=ref, build_type=build_type)


class StartRegressionCycleExecutor(BaseExecutor):
    """Consume the cycle's builds (manual mode) and move the cycle to IN_PROGRESS."""

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        cycle, release = ctx.cycle, ctx.release
        if cycle is None:
            raise NotFoundError("CREATE_REGRESSION_CYCLE task has no regression cycle")

        uploads = []
        with transaction.atomic():
            if release.manual_build_upload:
                uploads = ctx.ledger.consume_all(
                    release, Stage.REGRESSION, task=ctx.task, cycle=cycle
                )
            if cycle.status == CycleStatus.NOT_STARTED and not cycle.mark_started():
                cycle.refresh_from_db()
            if cycle.status != CycleStatus.IN_PROGRESS:
                raise ConflictError(f"Cycle {cycle.number} cannot start from {cycle.status}")

        return TaskOutcome.completed(
            cycle_id=str(cycle.id),
            cycle_number=cycle.number,
            upload_ids=[str(u.id) for u in uploads],
        )


class CreateTagExecutor(BaseExecutor):
    """Create the RC tag (per cycle) or the final release tag. Idempotent by ref existence."""

    integration_kind = IntegrationKind.SCM

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        release = ctx.release
        if ctx.task.task_type == TaskType.CREATE_RC_TAG:
            if ctx.cycle is None:
                raise NotFoundError("CREATE_RC_TAG task has no regression cycle")
            tag = release.rc_tag_name(ctx.cycle.number)
        else:
            tag = release.final_tag_name()

        tag, created = ensure_tag(ctx.provider, tag, release.branch)
        if ctx.cycle is not None and ctx.cycle.tag != tag:
            ctx.cycle.set_tag(tag)
        if release.release_tag != tag:
            release.set_release_tag(tag)
        return TaskOutcome.completed(tag=tag, created=created)


class ReleaseNotesExecutor(BaseExecutor):
    """Generate release notes between the current tag and the previous one."""

    integration_kind = IntegrationKind.SCM

    def previous_tag(self, ctx: TaskContext) -> str | None:
        if ctx.task.task_type == TaskType.CREATE_RELEASE_NOTES and ctx.cycle is not None:
            previous = (
                ctx.release.cycles.filter(number__lt=ctx.cycle.number)
                .exclude(tag="")
                .order_by("-number")
                .first()
            )
            if previous is not None:
                return previous.tag
        return ctx.release.config.get("previous_release_tag")

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        if ctx.task.task_type == TaskType.CREATE_RELEASE_NOTES:
            tag = ctx.cycle.tag if ctx.cycle is not None else ""
        else:
            tag = ctx.release.final_tag_name()
        tag = tag or ctx.release.release_tag
        if not tag:
            raise NotFoundError("No tag available to generate release notes for")
        previous = self.previous_tag(ctx)
        notes = ctx.provider.generate_release_notes(tag, previous_tag=previous)
        return TaskOutcome.completed(tag=tag, previous_tag=previous, notes=notes)


class CreateTestRunExecutor(BaseExecutor):
    """
    Create the platform's test run for a cycle.

    Later cycles reset the run used by the previous cycle instead of creating
    a new one.
    """

    integration_kind = IntegrationKind.TEST_MANAGEMENT

    def previous_run_id(self, ctx: TaskContext) -> str | None:
        previous = (
            Task.objects.filter(
                release=ctx.release,
                task_type=TaskType.CREATE_TEST_RUN,
                platform=ctx.task.platform,
            )
            .exclude(pk=ctx.task.pk)
            .exclude(external_id="")
            .order_by("-created_at")
            .first()
        )
        return previous.external_id if previous else None

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        previous = self.previous_run_id(ctx)
        if previous:
            run_id = ctx.provider.reset_test_run(previous)
            return TaskOutcome.awaiting(run_id, reset_from=previous)
        number = ctx.cycle.number if ctx.cycle is not None else 1
        name = f"{ctx.release.version} {ctx.task.platform} regression cycle {number}"
        run_id = ctx.provider.create_test_run(name, ctx.task.platform)
        return TaskOutcome.awaiting(run_id, name=name)


class SendMessageExecutor(BaseExecutor):
    """Post a stage message to the chat integration."""

    integration_kind = IntegrationKind.NOTIFICATION

    def build_text(self, ctx: TaskContext) -> str:
        release = ctx.release
        if ctx.task.task_type == TaskType.SEND_REGRESSION_BUILD_MESSAGE:
            number = ctx.cycle.number if ctx.cycle is not None else "?"
            tag = ctx.cycle.tag if ctx.cycle is not None else release.release_tag
            return (
                f":package: Regression builds for {release.version} (cycle {number}, {tag}) "
                f"are ready for testing on {', '.join(release.platforms or [])}."
            )
        return (
            f":rocket: Release {release.version} tagged {release.release_tag}; "
            f"release builds are ready."
        )

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        result = ctx.provider.send_message(self.build_text(ctx))
        if not result.get("success"):
            return TaskOutcome.failed(
                result.get("error", "Notification delivery failed"), "NotificationFailed"
            )
        return TaskOutcome.completed(message_id=result.get("message_id"))


class CheckTicketApprovalExecutor(BaseExecutor):
    """Start watching the release ticket; the polling service detects approval."""

    integration_kind = IntegrationKind.PROJECT_MANAGEMENT

    def execute(self, ctx: TaskContext) -> TaskOutcome:
        ticket_tasks = Task.objects.filter(
            release=ctx.release,
            task_type=TaskType.CREATE_PROJECT_MANAGEMENT_TICKET,
        )
        key = next(
            (t.external_data["ticket_key"] for t in ticket_tasks if t.external_data.get("ticket_key")),
            None,
        )
        if not key:
            raise NotFoundError(f"No project management ticket for release {ctx.release.version}")
        return TaskOutcome.awaiting(key, ticket_key=key)


HANDLERS: dict[str, BaseExecutor] = {
    TaskType.FORK_BRANCH: ForkBranchExecutor(),
    TaskType.CREATE_PROJECT_MANAGEMENT_TICKET: CreateTicketExecutor(),
    TaskType.TRIGGER_PRE_REGRESSION_BUILDS: TriggerBuildsExecutor(),
    TaskType.CREATE_REGRESSION_CYCLE: StartRegressionCycleExecutor(),
    TaskType.CREATE_RC_TAG: CreateTagExecutor(),
    TaskType.CREATE_RELEASE_NOTES: ReleaseNotesExecutor(),
    TaskType.TRIGGER_REGRESSION_BUILDS: TriggerBuildsExecutor(),
    TaskType.CREATE_TEST_RUN: CreateTestRunExecutor(),
    TaskType.SEND_REGRESSION_BUILD_MESSAGE: SendMessageExecutor(),
    TaskType.CREATE_RELEASE_TAG: CreateTagExecutor(),
    TaskType.CREATE_FINAL_RELEASE_NOTES: ReleaseNotesExecutor(),
    TaskType.TRIGGER_RELEASE_BUILDS: TriggerBuildsExecutor(),
    TaskType.CHECK_PROJECT_RELEASE_APPROVAL: CheckTicketApprovalExecutor(),
    TaskType.SEND_POST_REGRESSION_MESSAGE: SendMessageExecutor(),
}


class TaskExecutor:
    """
    Dispatches one eligible task to its handler.

    Claims the task with a conditional PENDING → IN_PROGRESS update, resolves
    the provider adapter, runs the handler once and records the outcome.
    Errors never escape ``dispatch``: they are stored on the task.
    """

    def __init__(
        self,
        handlers: dict[str, BaseExecutor] | None = None,
        ledger: BuildUploadLedger | None = None,
        resolver_factory: ResolverFactory | None = None,
        notify_failures: bool = True,
    ):
        self.handlers = handlers if handlers is not None else HANDLERS
        self.ledger = ledger or BuildUploadLedger()
        self.resolver_factory = resolver_factory or IntegrationResolver
        self.notify_failures = notify_failures

    def dispatch(self, task: Task, resolver=None) -> DispatchResult:
        """
        Run one task.

        Args:
            task: A PENDING task.
            resolver: Integration resolver for the task's tenant.

        Returns:
            DispatchResult describing the transition.
        """
        result = DispatchResult(
            task_id=str(task.id), task_type=task.task_type, platform=task.platform
        )
        if not task.claim():
            task.refresh_from_db()
            result.status = task.status
            logger.debug(f"Task {task.id} already claimed ({task.status}); skipping")
            return result

        release = task.release
        resolver = resolver or self.resolver_factory(release.tenant_id)
        tags = SignalTags.for_task(task)
        result.dispatched = True
        emit_task_started(tags)
        start_time = time.perf_counter()

        try:
            handler = self.handlers.get(task.task_type)
            if handler is None:
                raise UnknownTaskType(f"No handler registered for {task.task_type}")
            ctx = TaskContext(
                release=release,
                task=task,
                resolver=resolver,
                ledger=self.ledger,
                cycle=task.cycle,
            )
            kind = handler.required_kind(ctx)
            if kind:
                ctx.provider = resolver.get(kind)
            outcome = handler.execute(ctx)
        except (IntegrationError, BuildUploadError) as exc:
            logger.warning(f"Task {task.task_type} for release {release.id} failed: {exc}")
            outcome = TaskOutcome.failed(str(exc), type(exc).__name__)
        except Exception as exc:
            logger.exception(f"Unexpected error running {task.task_type} for release {release.id}")
            outcome = TaskOutcome.failed(str(exc), type(exc).__name__)

        result.duration_ms = (time.perf_counter() - start_time) * 1000
        self._apply(task, outcome, tags, result, resolver)
        return result

    def _apply(self, task: Task, outcome: TaskOutcome, tags, result: DispatchResult, resolver):
        if outcome.kind == OutcomeKind.AWAITING:
            applied = task.mark_awaiting(outcome.external_id, outcome.data)
            if applied:
                emit_task_awaiting(tags, outcome.external_id, result.duration_ms)
        elif outcome.kind == OutcomeKind.COMPLETED:
            applied = task.mark_completed(data=outcome.data)
            if applied:
                emit_task_succeeded(tags, result.duration_ms)
        else:
            applied = task.mark_failed(outcome.error, outcome.error_type)
            result.error = outcome.error
            if applied:
                emit_task_failed(tags, outcome.error_type, outcome.error, result.duration_ms)
                self._notify_failure(task, outcome, resolver)

        if not applied:
            logger.warning(f"Task {task.id} moved concurrently; outcome {outcome.kind} dropped")
            task.refresh_from_db()
        result.status = task.status
        result.conclusion = task.conclusion
        result.external_id = task.external_id

    def _notify_failure(self, task: Task, outcome: TaskOutcome, resolver) -> None:
        """Best-effort chat message about a failed task."""
        if not self.notify_failures or not resolver.has(IntegrationKind.NOTIFICATION):
            return
        platform = f" ({task.platform})" if task.platform else ""
        text = (
            f":x: Release {task.release.version}: {task.get_task_type_display()}{platform} "
            f"failed: {outcome.error}"
        )
        try:
            resolver.get(IntegrationKind.NOTIFICATION).send_message(text)
        except IntegrationError as exc:
            logger.warning(f"Failure notification for task {task.id} not sent: {exc}")
