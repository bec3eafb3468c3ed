"""Exception types raised by worksync.

Per-item failures (one media reference, one mirrored file) are converted
into result bookkeeping by the engines and never surface as exceptions.
The types below are for record-level, credential-level, and persistence
failures that callers are expected to handle.
"""


class WorksyncError(Exception):
    """Base class for all worksync errors."""


class QueuePersistenceError(WorksyncError):
    """The local edit queue could not be written to durable storage."""


class RecordNotFoundError(WorksyncError):
    """A remote Project or Team record no longer exists."""

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection}/{record_id} not found")


class MirrorNotConnectedError(WorksyncError):
    """No valid bearer credential is available for the mirror target."""


class DriveApiError(WorksyncError):
    """The Drive REST API returned a non-success response."""

    def __init__(self, operation: str, status_code: int, body: str) -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"Drive API {operation} error: {status_code} - {body}"
        )


class TokenRefreshError(WorksyncError):
    """The OAuth token endpoint rejected a refresh request."""

    def __init__(self, message: str, *, revoked: bool = False) -> None:
        self.revoked = revoked
        super().__init__(message)
