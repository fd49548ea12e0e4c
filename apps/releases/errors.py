"""Errors raised by release lifecycle services."""


class ReleaseError(Exception):
    """Base class for release lifecycle errors."""


class ApprovalNotAllowed(ReleaseError):
    """Regression approval was requested while the approval gate is closed."""

    def __init__(self, message: str, status=None):
        self.status = status
        super().__init__(message)


class CycleStateError(ReleaseError):
    """The regression cycle cannot make the requested transition."""


class ReleaseAbortError(ReleaseError):
    """The release can no longer be aborted."""
