"""
Provider adapter registry.

Adapter classes are registered by dotted path in the
``RELEASES_PROVIDER_CLASSES`` setting, keyed by integration kind and
provider name. Tenants choose a provider per kind through
``TenantIntegration`` rows.
"""

from __future__ import annotations

import logging
from typing import Callable

from django.conf import settings
from django.utils.module_loading import import_string

from apps.integrations.base import BaseIntegration
from apps.integrations.errors import MissingCredentialError
from apps.integrations.models import IntegrationKind, TenantIntegration

logger = logging.getLogger(__name__)


def get_provider_classes() -> dict[str, dict[str, str]]:
    """Return the configured ``{kind: {provider: dotted.path}}`` mapping."""
    return getattr(settings, "RELEASES_PROVIDER_CLASSES", {})


def get_provider_class(kind: str, provider: str) -> type[BaseIntegration]:
    """
    Resolve an adapter class.

    Args:
        kind: Integration kind (see IntegrationKind).
        provider: Provider name registered for that kind.

    Returns:
        The adapter class.

    Raises:
        KeyError: If no adapter is registered for the kind/provider pair.
    """
    registered = get_provider_classes().get(kind, {})
    if provider not in registered:
        raise KeyError(
            f"Unknown {kind} provider: {provider}. Available: {list(registered.keys())}"
        )
    return import_string(registered[provider])


def list_providers(kind: str | None = None) -> dict[str, list[str]]:
    """List registered provider names, optionally for a single kind."""
    classes = get_provider_classes()
    if kind is not None:
        return {kind: list(classes.get(kind, {}).keys())}
    return {k: list(v.keys()) for k, v in classes.items()}


def get_integration(tenant_id: str, kind: str) -> BaseIntegration:
    """Instantiate the active adapter for a tenant and kind.

    Raises:
        MissingCredentialError: No active integration exists, or its provider
            is not registered.
    """
    record = TenantIntegration.objects.filter(
        tenant_id=tenant_id, kind=kind, is_active=True
    ).first()
    if record is None:
        raise MissingCredentialError(tenant_id, kind)
    try:
        cls = get_provider_class(kind, record.provider)
    except (KeyError, ImportError) as exc:
        logger.warning(f"Integration {record} cannot be loaded: {exc}")
        raise MissingCredentialError(tenant_id, kind) from exc
    return cls(**(record.config or {}))


class IntegrationResolver:
    """Resolves and caches a tenant's adapters for the duration of one unit of work."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._cache: dict[str, BaseIntegration] = {}

    def get(self, kind: str) -> BaseIntegration:
        if kind not in self._cache:
            self._cache[kind] = get_integration(self.tenant_id, kind)
        return self._cache[kind]

    def has(self, kind: str) -> bool:
        if kind in self._cache:
            return True
        return TenantIntegration.objects.filter(
            tenant_id=self.tenant_id, kind=kind, is_active=True
        ).exists()

    def configured_kinds(self) -> list[str]:
        return [kind for kind in IntegrationKind.values if self.has(kind)]


ResolverFactory = Callable[[str], IntegrationResolver]
