"""
Data Transfer Objects (DTOs) for release orchestration.

Handlers receive a TaskContext and return a TaskOutcome; the executor,
polling service and scheduler report their work as the result objects
below so views and Celery tasks can serialize them with ``to_dict()``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from apps.builds.ledger import BuildUploadLedger
    from apps.integrations.base import BaseIntegration
    from apps.integrations.registry import IntegrationResolver
    from apps.orchestration.models import Task
    from apps.releases.models import RegressionCycle, Release


@dataclass
class TaskContext:
    """
    Input context for a task handler.

    Carries the minimal state a handler needs: the release (branch, version,
    config), the task itself, its regression cycle if any, and the provider
    adapter resolved for the handler's integration kind.
    """

    release: Release
    task: Task
    resolver: IntegrationResolver
    ledger: BuildUploadLedger
    cycle: RegressionCycle | None = None
    provider: BaseIntegration | None = None


class OutcomeKind:
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING = "awaiting"


@dataclass
class TaskOutcome:
    """Result of running a handler once."""

    kind: str
    external_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: str = ""
    error_type: str = ""

    @classmethod
    def completed(cls, **data: Any) -> TaskOutcome:
        return cls(kind=OutcomeKind.COMPLETED, data=data)

    @classmethod
    def awaiting(cls, external_id: str, **data: Any) -> TaskOutcome:
        return cls(kind=OutcomeKind.AWAITING, external_id=str(external_id), data=data)

    @classmethod
    def failed(cls, error: str, error_type: str = "Error", **data: Any) -> TaskOutcome:
        return cls(kind=OutcomeKind.FAILED, error=error, error_type=error_type, data=data)


@dataclass
class DispatchResult:
    """What happened when the executor dispatched one task."""

    task_id: str
    task_type: str
    platform: str = ""
    dispatched: bool = False
    status: str = ""
    conclusion: str | None = None
    external_id: str = ""
    error: str | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PollResult:
    """Reconciliation outcome for one in-flight task."""

    task_id: str
    task_type: str
    platform: str = ""
    external_id: str = ""
    previous_status: str = ""
    status: str = ""
    conclusion: str | None = None
    provider_status: str | None = None
    changed: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PollSummary:
    """Per-release summary returned by a polling pass."""

    release_id: str
    mode: str
    processed: int = 0
    updated: int = 0
    errors: int = 0
    results: list[PollResult] = field(default_factory=list)

    def add(self, result: PollResult) -> None:
        self.results.append(result)
        self.processed += 1
        if result.changed:
            self.updated += 1
        if result.error:
            self.errors += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "release_id": self.release_id,
            "mode": self.mode,
            "processed": self.processed,
            "updated": self.updated,
            "errors": self.errors,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class TickResult:
    """Outcome of one scheduler tick for one release."""

    release_id: str
    phase: str = ""
    acquired: bool = False
    tasks_created: int = 0
    dispatched: list[DispatchResult] = field(default_factory=list)
    pending_poll: PollSummary | None = None
    running_poll: PollSummary | None = None
    cycle_started: str | None = None
    cycle_completed: str | None = None
    phase_advanced_to: str | None = None
    error: str | None = None

    @property
    def skipped(self) -> bool:
        return not self.acquired

    def to_dict(self) -> dict[str, Any]:
        return {
            "release_id": self.release_id,
            "phase": self.phase,
            "acquired": self.acquired,
            "tasks_created": self.tasks_created,
            "dispatched": [d.to_dict() for d in self.dispatched],
            "pending_poll": self.pending_poll.to_dict() if self.pending_poll else None,
            "running_poll": self.running_poll.to_dict() if self.running_poll else None,
            "cycle_started": self.cycle_started,
            "cycle_completed": self.cycle_completed,
            "phase_advanced_to": self.phase_advanced_to,
            "error": self.error,
        }
