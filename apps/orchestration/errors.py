"""Errors raised by the task sequencer and executor."""


class OrchestrationError(Exception):
    """Base class for release orchestration errors."""


class TaskRetryError(OrchestrationError):
    """The task is in a state that cannot be retried (e.g. it already succeeded)."""


class UnknownTaskType(OrchestrationError):
    """No handler is registered for the task type."""
