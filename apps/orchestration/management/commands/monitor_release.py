"""
Management command to monitor releases and their tasks.

Usage:
    # List active releases
    python manage.py monitor_release --limit 10

    # Filter by phase
    python manage.py monitor_release --phase regression

    # Show tasks, cycles and approval status for a release
    python manage.py monitor_release --release-id <uuid>
"""

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand

from apps.releases.approval import ApprovalGate
from apps.releases.models import Release, ReleasePhase


class Command(BaseCommand):
    help = "Monitor releases: list, filter, and show task details."

    def add_arguments(self, parser):
        parser.add_argument(
            "--limit",
            type=int,
            default=10,
            help="Number of releases to show (default: 10)",
        )
        parser.add_argument(
            "--phase",
            type=str,
            help="Filter by phase (kickoff, regression, post_regression, done)",
        )
        parser.add_argument(
            "--release-id",
            type=str,
            help="Show details for a specific release",
        )

    def handle(self, *args, **options):
        release_id = options.get("release_id")
        if release_id:
            self.show_release_details(release_id)
        else:
            self.list_releases(options.get("phase"), options.get("limit"))

    def list_releases(self, phase, limit):
        qs = Release.objects.filter(is_archived=False)
        if phase:
            qs = qs.filter(phase__iexact=phase)
        qs = qs.order_by("-kickoff_at")[:limit]

        if not qs:
            self.stdout.write(self.style.WARNING("No releases found."))
            return

        self.stdout.write(
            f"{'Release ID':<38} {'Version':<12} {'Phase':<16} {'Tenant':<16} {'Kickoff':<20}"
        )
        self.stdout.write("-" * 104)
        for release in qs:
            self.stdout.write(
                f"{str(release.id):<38} {release.version:<12} {release.phase:<16} "
                f"{release.tenant_id:<16} {release.kickoff_at:%Y-%m-%d %H:%M:%S}"
            )

    def show_release_details(self, release_id):
        try:
            release = Release.objects.get(pk=release_id)
        except (Release.DoesNotExist, ValidationError):
            self.stdout.write(self.style.ERROR(f"Release not found: {release_id}"))
            return

        self.stdout.write(self.style.HTTP_INFO(f"Release: {release.version} ({release.id})"))
        self.stdout.write(f"  Tenant: {release.tenant_id}")
        self.stdout.write(f"  Phase: {release.phase}")
        self.stdout.write(f"  Branch: {release.branch} (from {release.base_branch})")
        self.stdout.write(f"  Tag: {release.release_tag or '-'}")
        self.stdout.write(f"  Platforms: {', '.join(release.platforms or [])}")
        self.stdout.write(f"  Manual uploads: {release.manual_build_upload}")
        if release.is_aborted:
            self.stdout.write(self.style.ERROR(f"  Aborted at: {release.aborted_at}"))
        self.stdout.write("")

        self.stdout.write("Tasks:")
        for task in release.tasks.select_related("cycle").order_by("created_at"):
            cycle = f"c{task.cycle.number}" if task.cycle else "-"
            self.stdout.write(
                f"  - {task.stage:<16} {cycle:<4} {task.task_type:<34} {task.platform or '-':<8} "
                f"{task.status:<18} {task.conclusion or '-':<8} attempt {task.attempt}"
            )
            if task.error:
                self.stdout.write(self.style.ERROR(f"      Error: {task.error}"))

        if release.phase == ReleasePhase.REGRESSION:
            status = ApprovalGate().evaluate(release)
            self.stdout.write("")
            self.stdout.write("Approval:")
            self.stdout.write(f"  Test management passed: {status.test_management_passed}")
            self.stdout.write(f"  Cherry-pick clean: {status.cherry_pick_clean}")
            self.stdout.write(f"  Cycles completed: {status.cycles_completed}")
            style = self.style.SUCCESS if status.can_approve else self.style.WARNING
            self.stdout.write(style(f"  Can approve: {status.can_approve}"))
        self.stdout.write("")
