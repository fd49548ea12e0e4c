"""Tests for the provider registry and tenant resolver."""

import pytest
from django.test import TestCase, override_settings

from apps.integrations._tests.fakes import FakeSCM
from apps.integrations.errors import MissingCredentialError
from apps.integrations.models import IntegrationKind, TenantIntegration
from apps.integrations.registry import (
    IntegrationResolver,
    get_integration,
    get_provider_class,
    list_providers,
)
from apps.integrations.slack import SlackNotificationProvider

PROVIDERS = {
    IntegrationKind.SCM: {"fake": "apps.integrations._tests.fakes.FakeSCM"},
    IntegrationKind.NOTIFICATION: {"slack": "apps.integrations.slack.SlackNotificationProvider"},
}


@override_settings(RELEASES_PROVIDER_CLASSES=PROVIDERS)
class ProviderClassTests(TestCase):
    def test_resolves_registered_class(self):
        assert get_provider_class(IntegrationKind.SCM, "fake") is FakeSCM

    def test_unknown_provider(self):
        with pytest.raises(KeyError, match="Unknown scm provider"):
            get_provider_class(IntegrationKind.SCM, "gitlab")

    def test_list_providers(self):
        assert list_providers() == {IntegrationKind.SCM: ["fake"], IntegrationKind.NOTIFICATION: ["slack"]}
        assert list_providers(IntegrationKind.CICD) == {IntegrationKind.CICD: []}


@override_settings(RELEASES_PROVIDER_CLASSES=PROVIDERS)
class TenantIntegrationTests(TestCase):
    def test_adapter_is_built_from_tenant_config(self):
        TenantIntegration.objects.create(
            tenant_id="tenant-1",
            kind=IntegrationKind.NOTIFICATION,
            provider="slack",
            config={"webhook_url": "https://hooks.slack.com/services/x"},
        )

        adapter = get_integration("tenant-1", IntegrationKind.NOTIFICATION)

        assert isinstance(adapter, SlackNotificationProvider)
        assert adapter.validate_config()

    def test_missing_integration(self):
        with pytest.raises(MissingCredentialError):
            get_integration("tenant-1", IntegrationKind.SCM)

    def test_unregistered_provider_counts_as_missing(self):
        TenantIntegration.objects.create(tenant_id="tenant-1", kind=IntegrationKind.SCM, provider="svn")
        with pytest.raises(MissingCredentialError):
            get_integration("tenant-1", IntegrationKind.SCM)

    def test_only_one_active_integration_per_kind(self):
        first = TenantIntegration.objects.create(
            tenant_id="tenant-1", kind=IntegrationKind.SCM, provider="fake"
        )
        TenantIntegration.objects.create(tenant_id="tenant-1", kind=IntegrationKind.SCM, provider="fake")

        first.refresh_from_db()
        assert first.is_active is False
        assert TenantIntegration.objects.filter(is_active=True).count() == 1

    def test_resolver_caches_and_reports_kinds(self):
        TenantIntegration.objects.create(tenant_id="tenant-1", kind=IntegrationKind.SCM, provider="fake")
        TenantIntegration.objects.create(
            tenant_id="tenant-2", kind=IntegrationKind.NOTIFICATION, provider="slack"
        )
        resolver = IntegrationResolver("tenant-1")

        assert resolver.get(IntegrationKind.SCM) is resolver.get(IntegrationKind.SCM)
        assert resolver.has(IntegrationKind.SCM)
        assert not resolver.has(IntegrationKind.NOTIFICATION)
        assert resolver.configured_kinds() == [IntegrationKind.SCM]
