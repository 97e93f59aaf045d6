"""
AccessMap - Error Taxonomy
Exceptions raised by the report lifecycle core.

Every error carries the HTTP status the ingestion API answers with, so the
boundary can map them with a single handler.
"""


class AccessMapError(Exception):
    """Base class for all core errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class InvalidInput(AccessMapError):
    """Malformed feature type, coordinates or photo reference."""

    status_code = 400


class NotFound(AccessMapError):
    """Unknown report or photo index."""

    status_code = 404


class AlreadyConfirmed(AccessMapError):
    """Actor has already confirmed this report."""

    status_code = 409


class AlreadyReported(AccessMapError):
    """Actor has already reported this report or photo."""

    status_code = 409


class AlreadyRemoved(AccessMapError):
    """Report has already been removed."""

    status_code = 404


class Removed(AccessMapError):
    """Report has been removed and accepts no further actions."""

    status_code = 404


class StorageUnavailable(AccessMapError):
    """Report store is unavailable or the update kept conflicting."""

    status_code = 503
