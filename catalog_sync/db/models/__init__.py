"""Database models for the catalog sync service."""
from catalog_sync.db.models.catalog_item import CatalogItem, active_items
from catalog_sync.db.models.price_record import PriceRecord
from catalog_sync.db.models.kit_component import KitComponent
from catalog_sync.db.models.sync_log import SyncLog
from catalog_sync.db.models.upload_session import UploadSession, StagingRecord
from catalog_sync.db.models.pending_update import PendingUpdateRequest
from catalog_sync.db.models.sync_schedule import SyncSchedule

__all__ = [
    # Catalog store
    "CatalogItem",
    "active_items",
    "PriceRecord",
    "KitComponent",
    # Sync bookkeeping
    "SyncLog",
    "PendingUpdateRequest",
    "SyncSchedule",
    # Bulk uploads
    "UploadSession",
    "StagingRecord",
]
