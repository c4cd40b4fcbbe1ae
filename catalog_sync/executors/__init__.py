"""Channel sync executors."""
from catalog_sync.executors.base import SyncExecutor, SyncRunMetrics
from catalog_sync.executors.api_executor import ApiSyncExecutor
from catalog_sync.executors.bulk_executor import BulkSyncExecutor
from catalog_sync.executors.registry import (
    register_executor,
    get_executor,
    registered_executors,
    list_registered_methods,
    clear_executors,
)

__all__ = [
    "SyncExecutor",
    "SyncRunMetrics",
    "ApiSyncExecutor",
    "BulkSyncExecutor",
    "register_executor",
    "get_executor",
    "registered_executors",
    "list_registered_methods",
    "clear_executors",
]
