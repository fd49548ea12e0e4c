"""Tests for the orchestration and integrations management commands."""

import json
import uuid
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from apps.integrations.models import IntegrationKind, TenantIntegration
from apps.orchestration.models import Task, TaskStatus, TaskType
from apps.releases._tests.factories import make_release
from apps.releases.models import ReleasePhase


class RunSchedulerCommandTests(TestCase):
    def test_single_tick_reports_each_release(self):
        release = make_release()
        out = StringIO()

        call_command("run_scheduler", stdout=out)

        assert str(release.id) in out.getvalue()
        # No SCM integration is configured for the tenant.
        fork = Task.objects.get(release=release, task_type=TaskType.FORK_BRANCH)
        assert fork.status == TaskStatus.FAILED
        assert fork.external_data["error_type"] == "MissingCredentialError"

    def test_json_output(self):
        release = make_release()
        out = StringIO()

        call_command("run_scheduler", "--json", stdout=out)

        (result,) = json.loads(out.getvalue())
        assert result["release_id"] == str(release.id)
        assert result["acquired"] is True

    def test_no_active_releases(self):
        out = StringIO()
        call_command("run_scheduler", stdout=out)
        assert "No active releases" in out.getvalue()

    def test_single_release(self):
        release = make_release()
        other = make_release(version="1.3.0")
        out = StringIO()

        call_command("run_scheduler", "--release-id", str(release.id), stdout=out)

        assert Task.objects.filter(release=release).exists()
        assert not Task.objects.filter(release=other).exists()

    def test_unknown_release(self):
        with pytest.raises(CommandError):
            call_command("run_scheduler", "--release-id", str(uuid.uuid4()), stdout=StringIO())


class MonitorReleaseCommandTests(TestCase):
    def test_lists_releases_by_phase(self):
        make_release(version="1.2.0")
        make_release(version="1.3.0", phase=ReleasePhase.REGRESSION)
        out = StringIO()

        call_command("monitor_release", "--phase", "regression", stdout=out)

        output = out.getvalue()
        assert "1.3.0" in output
        assert "1.2.0" not in output

    def test_empty_list(self):
        out = StringIO()
        call_command("monitor_release", stdout=out)
        assert "No releases found" in out.getvalue()

    def test_release_details_include_approval(self):
        release = make_release(phase=ReleasePhase.REGRESSION)
        out = StringIO()

        call_command("monitor_release", "--release-id", str(release.id), stdout=out)

        output = out.getvalue()
        assert "Release: 1.2.0" in output
        assert "Can approve: False" in output

    def test_unknown_release(self):
        out = StringIO()
        call_command("monitor_release", "--release-id", "nope", stdout=out)
        assert "Release not found" in out.getvalue()


@override_settings(
    RELEASES_PROVIDER_CLASSES={
        IntegrationKind.NOTIFICATION: {"slack": "apps.integrations.slack.SlackNotificationProvider"}
    }
)
class ListProvidersCommandTests(TestCase):
    def test_lists_registered_adapters(self):
        out = StringIO()
        call_command("list_providers", stdout=out)

        output = out.getvalue()
        assert "- slack" in output
        assert "NotificationIntegration" in output
        assert "(none registered)" in output

    def test_tenant_integrations(self):
        TenantIntegration.objects.create(
            tenant_id="acme", kind=IntegrationKind.NOTIFICATION, provider="slack", name="team"
        )
        out = StringIO()

        call_command("list_providers", "--kind", "notification", "--tenant", "acme", stdout=out)

        assert "notification: slack (team)" in out.getvalue()

    def test_unknown_kind(self):
        with pytest.raises(CommandError):
            call_command("list_providers", "--kind", "pager", stdout=StringIO())
