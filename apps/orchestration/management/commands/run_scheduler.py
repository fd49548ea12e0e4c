"""
Management command to run the release scheduler.

Usage:
    # Run a single tick across all active releases
    python manage.py run_scheduler

    # Advance a single release
    python manage.py run_scheduler --release-id <uuid>

    # Keep ticking on an interval (seconds)
    python manage.py run_scheduler --loop --interval 60

    # Print tick results as JSON
    python manage.py run_scheduler --json
"""

import json
import time

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from apps.orchestration.scheduler import ReleaseScheduler
from apps.releases.models import Release


class Command(BaseCommand):
    help = "Run the release scheduler: lock → sequence → dispatch → poll → cycles → advance"

    def add_arguments(self, parser):
        parser.add_argument(
            "--release-id",
            type=str,
            help="Only process this release",
        )
        parser.add_argument(
            "--loop",
            action="store_true",
            help="Tick repeatedly until interrupted",
        )
        parser.add_argument(
            "--interval",
            type=int,
            default=getattr(settings, "RELEASES_SCHEDULER_INTERVAL_SECONDS", 60),
            help="Seconds between ticks with --loop (default: RELEASES_SCHEDULER_INTERVAL_SECONDS)",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Output tick results as JSON",
        )

    def handle(self, *args, **options):
        scheduler = ReleaseScheduler()
        release_id = options.get("release_id")

        if release_id:
            try:
                release = Release.objects.get(pk=release_id)
            except (Release.DoesNotExist, ValidationError) as e:
                raise CommandError(f"Release not found: {release_id}") from e

        while True:
            if release_id:
                results = [scheduler.process_release(release)]
            else:
                results = scheduler.tick()
            self.report(results, options.get("json"))
            if not options.get("loop"):
                break
            time.sleep(options["interval"])

    def report(self, results, as_json: bool):
        if as_json:
            self.stdout.write(json.dumps([r.to_dict() for r in results], indent=2, default=str))
            return

        if not results:
            self.stdout.write(self.style.WARNING("No active releases."))
            return

        for result in results:
            if result.error:
                self.stdout.write(self.style.ERROR(f"{result.release_id}: {result.error}"))
                continue
            if result.skipped:
                self.stdout.write(self.style.WARNING(f"{result.release_id}: locked, skipped"))
                continue
            line = (
                f"{result.release_id} [{result.phase}] dispatched={len(result.dispatched)} "
                f"polled={result.running_poll.processed if result.running_poll else 0}"
            )
            if result.phase_advanced_to:
                line += f" advanced→{result.phase_advanced_to}"
            if result.cycle_started:
                line += f" cycle_started={result.cycle_started}"
            self.stdout.write(self.style.SUCCESS(line))
