"""Enumerations shared by the ORM layer and the pydantic models."""
from enum import Enum


class SyncType(str, Enum):
    """Independent datasets kept in sync with the supplier."""
    INVENTORY = "inventory"
    PRICING = "pricing"
    KITS = "kits"


class SyncMethod(str, Enum):
    """Supplier channel used for a sync."""
    API = "api"
    BULK = "bulk"


class SyncMode(str, Enum):
    """Scope of a sync run."""
    FULL = "full"
    INCREMENTAL = "incremental"
    SINGLE = "single"


class SyncLogStatus(str, Enum):
    """Sync log lifecycle: running -> completed | failed | rate_limited."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncLogStatus.RUNNING


class ItemSyncStatus(str, Enum):
    """Per-row outcome of the last supplier sync."""
    SYNCED = "synced"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    ERROR = "error"


class RecordState(str, Enum):
    """Soft-deletion state of a catalog row."""
    ACTIVE = "active"
    REMOVED = "removed"


class UploadStatus(str, Enum):
    """Bulk upload session status."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UploadStage(str, Enum):
    """Pipeline stage of a bulk upload session."""
    PARSING = "parsing"
    VALIDATING = "validating"
    STAGING = "staging"
    SYNCING = "syncing"
    COMPLETED = "completed"


class StagingStatus(str, Enum):
    """Validation status of a staging record."""
    VALID = "valid"
    INVALID = "invalid"
    PROCESSED = "processed"


class StagingAction(str, Enum):
    """What reconciling a staging record will do to the catalog."""
    INSERT = "insert"
    UPDATE = "update"
    UNKNOWN = "unknown"


class UpdateRequestStatus(str, Enum):
    """Pending single-record update request status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Endpoint gated by the rate limiter for each sync type
SYNC_TYPE_ENDPOINTS = {
    SyncType.INVENTORY: "/inventory",
    SyncType.PRICING: "/pricing",
    SyncType.KITS: "/kits",
}
