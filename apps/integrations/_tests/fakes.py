"""In-memory provider adapters used across the test suite."""

from __future__ import annotations

from typing import Any

from apps.integrations.base import (
    CICDIntegration,
    NotificationIntegration,
    ProjectManagementIntegration,
    RefInfo,
    SCMIntegration,
    TestManagementIntegration,
    TestRunReport,
    TestRunState,
    TicketStatus,
    WorkflowState,
)
from apps.integrations.errors import ConflictError, MissingCredentialError, NotFoundError
from apps.integrations.models import IntegrationKind


class FakeSCM(SCMIntegration):
    name = "fake"

    def __init__(self, **config: Any):
        super().__init__(**config)
        self.branches: dict[str, str] = {"main": "sha-main"}
        self.refs: dict[str, RefInfo] = {}
        self.tag_objects: dict[str, RefInfo] = {}
        self.calls: list[tuple] = []
        self.fail_with: Exception | None = None

    def _call(self, *call):
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    def branch_exists(self, branch: str) -> bool:
        self._call("branch_exists", branch)
        return branch in self.branches

    def fork_branch(self, branch: str, base_branch: str) -> str:
        self._call("fork_branch", branch, base_branch)
        self.branches[branch] = self.branches.get(base_branch, "sha-base")
        return self.branches[branch]

    def create_tag(self, tag: str, target: str) -> str:
        self._call("create_tag", tag, target)
        if f"tags/{tag}" in self.refs:
            raise ConflictError(f"Tag {tag} already exists")
        sha = self.branches.get(target, target)
        self.refs[f"tags/{tag}"] = RefInfo(sha=sha)
        return sha

    def generate_release_notes(self, tag: str, previous_tag: str | None = None) -> str:
        self._call("generate_release_notes", tag, previous_tag)
        return f"Notes for {tag} since {previous_tag or 'the beginning'}"

    def compare_commits(self, base: str, head: str) -> dict[str, Any]:
        self._call("compare_commits", base, head)
        return {"ahead_by": 0, "behind_by": 0}

    def get_branch_head(self, branch: str) -> str:
        self._call("get_branch_head", branch)
        if branch not in self.branches:
            raise NotFoundError(f"Branch {branch} not found")
        return self.branches[branch]

    def get_ref(self, ref: str) -> RefInfo:
        self._call("get_ref", ref)
        if ref not in self.refs:
            raise NotFoundError(f"Ref {ref} not found")
        return self.refs[ref]

    def get_tag(self, sha: str) -> RefInfo:
        self._call("get_tag", sha)
        if sha not in self.tag_objects:
            raise NotFoundError(f"Tag object {sha} not found")
        return self.tag_objects[sha]


class FakeCICD(CICDIntegration):
    name = "fake"

    def __init__(self, **config: Any):
        super().__init__(**config)
        self.runs: dict[str, str] = {}
        self.triggered: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None

    def trigger_workflow(self, platform, build_type, ref, inputs=None) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        run_id = f"run-{len(self.triggered) + 1}"
        self.triggered.append(
            {"run_id": run_id, "platform": platform, "build_type": build_type, "ref": ref}
        )
        self.runs[run_id] = WorkflowState.PENDING
        return run_id

    def get_workflow_status(self, run_id: str) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        return self.runs.get(run_id, WorkflowState.PENDING)

    def finish_all(self, state: str = WorkflowState.COMPLETED) -> None:
        for run_id in self.runs:
            self.runs[run_id] = state


class FakeTestManagement(TestManagementIntegration):
    name = "fake"

    def __init__(self, **config: Any):
        super().__init__(**config)
        self.reports: dict[str, TestRunReport] = {}
        self.created: list[tuple[str, str]] = []
        self.reset: list[str] = []
        self.cancelled: list[str] = []
        self.fail_with: Exception | None = None

    def create_test_run(self, name: str, platform: str) -> str:
        run_id = f"tr-{len(self.created) + 1}"
        self.created.append((name, platform))
        self.reports[run_id] = TestRunReport(run_id=run_id, status=TestRunState.PENDING)
        return run_id

    def get_test_status(self, run_id: str) -> TestRunReport:
        if self.fail_with is not None:
            raise self.fail_with
        return self.reports[run_id]

    def reset_test_run(self, run_id: str) -> str:
        self.reset.append(run_id)
        self.reports[run_id] = TestRunReport(run_id=run_id, status=TestRunState.PENDING)
        return run_id

    def cancel_test_run(self, run_id: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.cancelled.append(run_id)

    def complete(self, run_id: str, passed: int, total: int) -> None:
        self.reports[run_id] = TestRunReport(
            run_id=run_id,
            status=TestRunState.COMPLETED,
            total=total,
            passed=passed,
            failed=total - passed,
        )


class FakeProjectManagement(ProjectManagementIntegration):
    name = "fake"

    def __init__(self, **config: Any):
        super().__init__(**config)
        self.tickets: dict[str, TicketStatus] = {}

    def create_ticket(self, title: str, description: str = "") -> str:
        key = f"REL-{len(self.tickets) + 1}"
        self.tickets[key] = TicketStatus(key=key, status="Open", extra={"title": title})
        return key

    def get_ticket_status(self, key: str) -> TicketStatus:
        if key not in self.tickets:
            raise NotFoundError(f"Ticket {key} not found")
        return self.tickets[key]

    def approve(self, key: str) -> None:
        self.tickets[key] = TicketStatus(key=key, status="Approved", is_approved=True)


class FakeNotifier(NotificationIntegration):
    name = "fake"

    def __init__(self, **config: Any):
        super().__init__(**config)
        self.messages: list[str] = []
        self.succeed = True

    def send_message(self, text: str, channel: str | None = None) -> dict[str, Any]:
        self.messages.append(text)
        if not self.succeed:
            return {"success": False, "error": "channel_not_found"}
        return {"success": True, "message_id": str(len(self.messages))}


class FakeResolver:
    """Stands in for IntegrationResolver with a fixed set of adapters."""

    def __init__(self, providers: dict[str, Any] | None = None, tenant_id: str = "tenant-1"):
        self.tenant_id = tenant_id
        self.providers = dict(providers or {})

    def get(self, kind: str):
        if kind not in self.providers:
            raise MissingCredentialError(self.tenant_id, kind)
        return self.providers[kind]

    def has(self, kind: str) -> bool:
        return kind in self.providers

    def configured_kinds(self) -> list[str]:
        return [kind for kind in IntegrationKind.values if kind in self.providers]

    def factory(self, tenant_id: str) -> FakeResolver:
        return self


def full_resolver(**overrides) -> FakeResolver:
    """A resolver with every integration kind configured."""
    providers = {
        IntegrationKind.SCM: FakeSCM(),
        IntegrationKind.CICD: FakeCICD(),
        IntegrationKind.TEST_MANAGEMENT: FakeTestManagement(),
        IntegrationKind.PROJECT_MANAGEMENT: FakeProjectManagement(),
        IntegrationKind.NOTIFICATION: FakeNotifier(),
    }
    providers.update(overrides)
    return FakeResolver({k: v for k, v in providers.items() if v is not None})
