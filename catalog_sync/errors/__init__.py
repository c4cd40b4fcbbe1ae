"""Error handling module."""
from catalog_sync.errors.exceptions import (
    CatalogSyncError,
    TransportError,
    RateLimitedError,
    MalformedInputError,
    ValidationError,
    SyncInProgressError,
    RecordNotFoundError,
    DatabaseError,
    ConflictError,
)

__all__ = [
    "CatalogSyncError",
    "TransportError",
    "RateLimitedError",
    "MalformedInputError",
    "ValidationError",
    "SyncInProgressError",
    "RecordNotFoundError",
    "DatabaseError",
    "ConflictError",
]
