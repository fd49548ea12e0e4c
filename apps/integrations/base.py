"""Base adapter contracts and data structures for provider integrations.

Concrete adapters talk to third-party systems (source control, CI/CD, test
management, ticketing, chat). The engine only depends on the capabilities
declared here.

Public API:
- RefInfo, TestRunReport, TestStatusEvaluation, TicketStatus
- BaseIntegration and one abstract contract per IntegrationKind
- evaluate_test_status
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any

from apps.integrations.models import IntegrationKind


class WorkflowState:
    """Normalized CI/CD workflow states returned by ``get_workflow_status``."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    STARTED = (RUNNING, COMPLETED)
    TERMINAL_FAILURE = (FAILED, CANCELLED)


class TestRunState:
    """Normalized test-run states reported by test-management adapters."""

    __test__ = False

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    STARTED = (IN_PROGRESS, COMPLETED)


@dataclass
class RefInfo:
    """A git object pointer: the SHA a ref or tag object points at, and that object's type."""

    sha: str
    object_type: str = "commit"  # commit | tag

    @property
    def is_commit(self) -> bool:
        return self.object_type == "commit"

    @property
    def is_tag(self) -> bool:
        return self.object_type == "tag"


@dataclass
class TestRunReport:
    """Raw result counts for a test run as reported by the provider."""

    __test__ = False

    run_id: str
    status: str
    total: int = 0
    passed: int = 0
    failed: int = 0
    untested: int = 0
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TestStatusEvaluation:
    """Threshold evaluation of a test run."""

    __test__ = False

    status: str
    pass_percentage: float
    threshold: float
    is_passing_threshold: bool
    ready_for_approval: bool
    report: TestRunReport | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("report", None)
        return data


@dataclass
class TicketStatus:
    """Status of a project-management ticket."""

    key: str
    status: str
    is_approved: bool = False
    url: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


def evaluate_test_status(report: TestRunReport, threshold: float) -> TestStatusEvaluation:
    """Compare a test run's pass percentage against a threshold.

    The pass percentage is rounded to two decimals and is 0 when the run has
    no test cases. A run is ready for approval only once it has completed and
    meets the threshold.
    """
    if report.total > 0:
        pass_percentage = round(report.passed / report.total * 100, 2)
    else:
        pass_percentage = 0.0
    is_passing = pass_percentage >= threshold
    return TestStatusEvaluation(
        status=report.status,
        pass_percentage=pass_percentage,
        threshold=threshold,
        is_passing_threshold=is_passing,
        ready_for_approval=report.status == TestRunState.COMPLETED and is_passing,
        report=report,
    )


class BaseIntegration(ABC):
    """Abstract base class for every provider adapter.

    Adapters are instantiated with the JSON config stored on the tenant's
    ``TenantIntegration`` row.
    """

    kind: str = ""
    name: str = "base"

    def __init__(self, **config: Any):
        self.config = config

    def validate_config(self) -> bool:
        """Return True when the adapter has everything it needs to make calls."""
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} kind={self.kind} name={self.name}>"


class SCMIntegration(BaseIntegration):
    """Source-control host capabilities."""

    kind = IntegrationKind.SCM

    @abstractmethod
    def branch_exists(self, branch: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def fork_branch(self, branch: str, base_branch: str) -> str:
        """Create ``branch`` from ``base_branch`` and return the head SHA."""
        raise NotImplementedError

    @abstractmethod
    def create_tag(self, tag: str, target: str) -> str:
        """Create a tag on ``target`` (branch or SHA). Raises ConflictError if it exists."""
        raise NotImplementedError

    @abstractmethod
    def generate_release_notes(self, tag: str, previous_tag: str | None = None) -> str:
        raise NotImplementedError

    @abstractmethod
    def compare_commits(self, base: str, head: str) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_branch_head(self, branch: str) -> str:
        """Return the SHA of the branch's head commit."""
        raise NotImplementedError

    @abstractmethod
    def get_ref(self, ref: str) -> RefInfo:
        """Look up a ref such as ``tags/v1.2.0``. Raises NotFoundError when missing."""
        raise NotImplementedError

    @abstractmethod
    def get_tag(self, sha: str) -> RefInfo:
        """Dereference an annotated tag object to the object it points at."""
        raise NotImplementedError


class CICDIntegration(BaseIntegration):
    """CI/CD runner capabilities."""

    kind = IntegrationKind.CICD

    @abstractmethod
    def trigger_workflow(
        self,
        platform: str,
        build_type: str,
        ref: str,
        inputs: dict[str, Any] | None = None,
    ) -> str:
        """Start a workflow run and return the provider's run id without waiting."""
        raise NotImplementedError

    @abstractmethod
    def get_workflow_status(self, run_id: str) -> str:
        """Return one of the ``WorkflowState`` values."""
        raise NotImplementedError


class TestManagementIntegration(BaseIntegration):
    """Test-run platform capabilities."""

    __test__ = False

    kind = IntegrationKind.TEST_MANAGEMENT

    @abstractmethod
    def create_test_run(self, name: str, platform: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def get_test_status(self, run_id: str) -> TestRunReport:
        raise NotImplementedError

    @abstractmethod
    def reset_test_run(self, run_id: str) -> str:
        """Reset an existing run for a new cycle and return the (possibly new) run id."""
        raise NotImplementedError

    @abstractmethod
    def cancel_test_run(self, run_id: str) -> None:
        raise NotImplementedError


class ProjectManagementIntegration(BaseIntegration):
    """Ticketing system capabilities."""

    kind = IntegrationKind.PROJECT_MANAGEMENT

    @abstractmethod
    def create_ticket(self, title: str, description: str = "") -> str:
        """Create a ticket and return its key."""
        raise NotImplementedError

    @abstractmethod
    def get_ticket_status(self, key: str) -> TicketStatus:
        raise NotImplementedError


class NotificationIntegration(BaseIntegration):
    """Chat notifier capabilities."""

    kind = IntegrationKind.NOTIFICATION

    @abstractmethod
    def send_message(self, text: str, channel: str | None = None) -> dict[str, Any]:
        """Send a message. Returns a dict with at least ``success``."""
        raise NotImplementedError


CONTRACTS: dict[str, type[BaseIntegration]] = {
    IntegrationKind.SCM: SCMIntegration,
    IntegrationKind.CICD: CICDIntegration,
    IntegrationKind.TEST_MANAGEMENT: TestManagementIntegration,
    IntegrationKind.PROJECT_MANAGEMENT: ProjectManagementIntegration,
    IntegrationKind.NOTIFICATION: NotificationIntegration,
}
