"""
Error taxonomy for provider integrations.

Adapters translate provider-specific failures into these exceptions so the
engine can decide how a task should transition without knowing which
third-party system raised.
"""


class IntegrationError(Exception):
    """Base class for all provider adapter failures."""


class NotFoundError(IntegrationError):
    """A branch, ref, tag object, run or ticket does not exist."""


class ConflictError(IntegrationError):
    """The resource already exists (e.g. a tag ref). Idempotent creates treat this as success."""


class MissingCredentialError(IntegrationError):
    """No active integration is configured for the tenant and capability."""

    def __init__(self, tenant_id: str, kind: str):
        self.tenant_id = tenant_id
        self.kind = kind
        super().__init__(f"No active {kind} integration configured for tenant '{tenant_id}'")


class TransientError(IntegrationError):
    """Network failure or 5xx from the provider. Recorded on the task, retried manually."""
