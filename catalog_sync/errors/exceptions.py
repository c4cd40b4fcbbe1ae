"""Custom exception hierarchy for catalog synchronization errors."""
from typing import List, Optional


class CatalogSyncError(Exception):
    """Base exception for all catalog synchronization errors."""

    def __init__(self, message: str, *args, **kwargs):
        """Initialize error with message."""
        self.message = message
        super().__init__(message, *args, **kwargs)


class TransportError(CatalogSyncError):
    """Raised when a supplier channel cannot be reached (network, timeout, 5xx)."""
    pass


class RateLimitedError(CatalogSyncError):
    """Raised when a supplier channel is throttling requests.

    Not retried immediately; the next scheduled run defers to the
    decision engine.
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        self.endpoint = endpoint
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class MalformedInputError(CatalogSyncError):
    """Raised when a bulk file cannot be accepted (missing required columns)."""

    def __init__(self, message: str, missing_columns: Optional[List[str]] = None):
        self.missing_columns = missing_columns or []
        super().__init__(message)


class ValidationError(CatalogSyncError):
    """Raised when data validation fails."""
    pass


class SyncInProgressError(CatalogSyncError):
    """Raised when a sync is requested while another one is running."""
    pass


class RecordNotFoundError(CatalogSyncError):
    """Raised when a staging record, upload session or catalog row does not exist."""
    pass


class DatabaseError(CatalogSyncError):
    """Raised when database operations fail."""
    pass


class ConflictError(DatabaseError):
    """Raised when a catalog write violates a uniqueness assumption."""
    pass
