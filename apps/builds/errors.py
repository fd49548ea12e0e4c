"""Errors raised by the build upload ledger."""


class BuildUploadError(Exception):
    """Base class for build upload ledger errors."""


class InvalidUpload(BuildUploadError):
    """The stage or platform is not valid for the release."""


class UploadNotFound(BuildUploadError):
    """No unused upload exists for the requested release, stage and platform."""


class UploadAlreadyConsumed(BuildUploadError):
    """The upload was already consumed and can no longer be used, replaced or deleted."""
