"""Exception taxonomy for the offline sync engine.

Per-item errors (validation, persistence, timeout) are captured into that
item's outcome by the queue processor. Resolution errors propagate to the
route and are rendered by ``sync_error_handler``.
"""

from fastapi import status


class SyncError(Exception):
    """Base class for sync engine failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "SYNC_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SyncValidationError(SyncError, ValueError):
    """Malformed sync item: unknown resource type, missing or invalid fields."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class PersistenceError(SyncError):
    """The store rejected a write (constraint violation, connectivity)."""

    code = "PERSISTENCE_ERROR"


class SyncTimeoutError(SyncError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "TIMEOUT"


class ConflictNotFound(SyncError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "CONFLICT_NOT_FOUND"


class ConflictAlreadyResolved(SyncError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT_ALREADY_RESOLVED"


class ResolutionNotSupported(SyncError):
    """Requested strategy has no defined semantics (field-level merge)."""

    status_code = status.HTTP_501_NOT_IMPLEMENTED
    code = "RESOLUTION_NOT_SUPPORTED"
