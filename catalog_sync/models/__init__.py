"""Pydantic validation models."""
from catalog_sync.models.enums import (
    SyncType,
    SyncMethod,
    SyncMode,
    SyncLogStatus,
    ItemSyncStatus,
    RecordState,
    UploadStatus,
    UploadStage,
    StagingStatus,
    StagingAction,
    UpdateRequestStatus,
    SYNC_TYPE_ENDPOINTS,
)
from catalog_sync.models.records import (
    ApiRecord,
    BulkFeedRecord,
    PricingFeedRecord,
    KitFeedRecord,
    BulkFileRecord,
    CatalogRecordData,
    PriceRecordData,
    KitComponentData,
)
from catalog_sync.models.bulk_file import (
    ValidationResult,
    ProcessedRecord,
    ValidationSummary,
    BulkFileResult,
    StagingFilter,
    ReconciliationSummary,
    UploadResult,
)
from catalog_sync.models.sync_results import (
    ApiResponse,
    BulkFetchResult,
    SyncConditions,
    SyncDecision,
    SyncResult,
    SyncRequest,
    TypeSyncOutcome,
    ComprehensiveSyncResult,
    SchedulerStatus,
)

__all__ = [
    # Enums
    "SyncType",
    "SyncMethod",
    "SyncMode",
    "SyncLogStatus",
    "ItemSyncStatus",
    "RecordState",
    "UploadStatus",
    "UploadStage",
    "StagingStatus",
    "StagingAction",
    "UpdateRequestStatus",
    "SYNC_TYPE_ENDPOINTS",
    # Record shapes
    "ApiRecord",
    "BulkFeedRecord",
    "PricingFeedRecord",
    "KitFeedRecord",
    "BulkFileRecord",
    "CatalogRecordData",
    "PriceRecordData",
    "KitComponentData",
    # Bulk file pipeline
    "ValidationResult",
    "ProcessedRecord",
    "ValidationSummary",
    "BulkFileResult",
    "StagingFilter",
    "ReconciliationSummary",
    "UploadResult",
    # Sync results
    "ApiResponse",
    "BulkFetchResult",
    "SyncConditions",
    "SyncDecision",
    "SyncResult",
    "SyncRequest",
    "TypeSyncOutcome",
    "ComprehensiveSyncResult",
    "SchedulerStatus",
]
