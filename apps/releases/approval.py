"""
Regression approval gate.

The gate combines three independently computed checks. Every check resolves
unreachable or ambiguous state to the blocking value: approval can stall but
never proceed incorrectly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from django.utils import timezone

from apps.integrations.errors import IntegrationError, NotFoundError
from apps.integrations.models import IntegrationKind
from apps.integrations.registry import IntegrationResolver, ResolverFactory
from apps.orchestration.models import Stage, Task, TaskType
from apps.orchestration.sequencer import TaskSequencer
from apps.orchestration.signals import SignalTags, emit_phase_advanced
from apps.releases.errors import ApprovalNotAllowed
from apps.releases.models import CycleStatus, ReleasePhase

logger = logging.getLogger(__name__)

# Annotated tags are dereferenced at most this many times.
MAX_TAG_DEREFERENCES = 2


@dataclass
class ApprovalStatus:
    """Result of evaluating the regression approval gate."""

    test_management_passed: bool = False
    cherry_pick_clean: bool = False
    cycles_completed: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def can_approve(self) -> bool:
        return self.test_management_passed and self.cherry_pick_clean and self.cycles_completed

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_management_passed": self.test_management_passed,
            "cherry_pick_clean": self.cherry_pick_clean,
            "cycles_completed": self.cycles_completed,
            "can_approve": self.can_approve,
            "details": self.details,
        }


def resolve_tag_commit(scm, tag: str) -> str:
    """
    Resolve a tag name to the SHA of the commit it points at.

    Lightweight tags point straight at a commit. Annotated tags point at a
    tag object, which is dereferenced once, and once more if the result is
    still a tag object.

    Raises:
        NotFoundError: If the tag is missing or does not resolve to a commit
            within two dereferences.
    """
    ref = scm.get_ref(f"tags/{tag}")
    for _ in range(MAX_TAG_DEREFERENCES):
        if not ref.is_tag:
            break
        ref = scm.get_tag(ref.sha)
    if not ref.is_commit:
        raise NotFoundError(f"Tag {tag} does not resolve to a commit")
    return ref.sha


class ApprovalGate:
    """Evaluates and applies the REGRESSION → POST_REGRESSION approval."""

    def __init__(
        self,
        sequencer: TaskSequencer | None = None,
        resolver_factory: ResolverFactory | None = None,
    ):
        self.resolver_factory = resolver_factory or IntegrationResolver
        self.sequencer = sequencer or TaskSequencer(resolver_factory=self.resolver_factory)

    def check_test_management(self, release, resolver) -> tuple[bool, dict[str, Any]]:
        """Latest test run of every platform completed with success (threshold met)."""
        if not resolver.has(IntegrationKind.TEST_MANAGEMENT):
            return True, {"configured": False}

        runs = (
            Task.objects.filter(release=release, task_type=TaskType.CREATE_TEST_RUN)
            .exclude(cycle__status=CycleStatus.ABANDONED)
            .order_by("-created_at", "-cycle__number")
        )
        latest: dict[str, Task] = {}
        for task in runs:
            latest.setdefault(task.platform, task)

        per_platform = {}
        for platform in release.platforms or []:
            task = latest.get(platform)
            per_platform[platform] = {
                "task_id": str(task.id) if task else None,
                "status": task.status if task else None,
                "conclusion": task.conclusion if task else None,
                "pass_percentage": (task.external_data or {}).get("pass_percentage") if task else None,
            }
        passed = bool(per_platform) and all(
            latest.get(p) is not None and latest[p].is_successful for p in per_platform
        )
        return passed, {"configured": True, "platforms": per_platform}

    def check_cherry_pick(self, release, resolver) -> tuple[bool, dict[str, Any]]:
        """Branch head equals the commit the release tag resolves to."""
        if not release.release_tag:
            return False, {"reason": "no release tag"}
        try:
            scm = resolver.get(IntegrationKind.SCM)
            tag_sha = resolve_tag_commit(scm, release.release_tag)
            head_sha = scm.get_branch_head(release.branch)
        except IntegrationError as exc:
            logger.warning(f"Cherry-pick check for release {release.id} failed: {exc}")
            return False, {"reason": str(exc)}
        except Exception as exc:
            logger.exception(f"Unexpected error in cherry-pick check for release {release.id}")
            return False, {"reason": str(exc)}
        return head_sha == tag_sha, {
            "tag": release.release_tag,
            "tag_sha": tag_sha,
            "head_sha": head_sha,
        }

    def check_cycles(self, release) -> tuple[bool, dict[str, Any]]:
        """Every created (non-abandoned) cycle is DONE and no slot is still scheduled."""
        statuses = list(
            release.cycles.exclude(status=CycleStatus.ABANDONED).values_list("status", flat=True)
        )
        upcoming = release.regression_slots.filter(consumed_at__isnull=True).count()
        completed = (
            bool(statuses) and all(s == CycleStatus.DONE for s in statuses) and upcoming == 0
        )
        return completed, {
            "total": len(statuses),
            "done": sum(1 for s in statuses if s == CycleStatus.DONE),
            "upcoming_slots": upcoming,
        }

    def evaluate(self, release, resolver=None) -> ApprovalStatus:
        """Compute all three checks for a release."""
        resolver = resolver or self.resolver_factory(release.tenant_id)
        tests_passed, tests_details = self.check_test_management(release, resolver)
        clean, cherry_details = self.check_cherry_pick(release, resolver)
        cycles_done, cycle_details = self.check_cycles(release)
        return ApprovalStatus(
            test_management_passed=tests_passed,
            cherry_pick_clean=clean,
            cycles_completed=cycles_done,
            details={
                "test_management": tests_details,
                "cherry_pick": cherry_details,
                "cycles": cycle_details,
                "evaluated_at": timezone.now().isoformat(),
            },
        )

    def approve(self, release, resolver=None) -> ApprovalStatus:
        """
        Approve regression and seed the POST_REGRESSION tasks.

        Raises:
            ApprovalNotAllowed: If the gate is closed or the release is not in
                REGRESSION any more.
        """
        resolver = resolver or self.resolver_factory(release.tenant_id)
        status = self.evaluate(release, resolver)
        if not status.can_approve:
            raise ApprovalNotAllowed("Regression approval requirements are not met", status)
        if not release.advance_phase(ReleasePhase.REGRESSION, ReleasePhase.POST_REGRESSION):
            release.refresh_from_db()
            raise ApprovalNotAllowed(f"Release is in {release.phase}, not REGRESSION", status)

        emit_phase_advanced(
            SignalTags.for_release(release), ReleasePhase.REGRESSION, ReleasePhase.POST_REGRESSION
        )
        self.sequencer.ensure_stage_tasks(release, Stage.POST_REGRESSION, resolver=resolver)
        logger.info(f"Release {release.id} approved for post-regression")
        return status
