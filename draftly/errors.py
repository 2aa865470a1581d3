"""
Failure taxonomy shared by the remote client and the autosave engine.
"""


class DraftError(Exception):
    """Base class for everything the editor can surface."""


class ValidationError(DraftError):
    """Fields rejected before (or by) the server; blocks submission."""


class Unauthorized(DraftError):
    """No active session, or the session expired."""


class NotFound(DraftError):
    """The blog id is stale or belongs to somebody else."""


class NetworkFailure(DraftError):
    """Transient transport problem: offline, timeout, 5xx."""


class RateLimited(NetworkFailure):
    """Server answered 429; retry after ``retry_after`` seconds."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class StorageFailure(DraftError):
    """Local snapshot could not be read or written."""
