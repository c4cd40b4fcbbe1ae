"""HTTP clients for the two supplier channels."""
from catalog_sync.clients.api_client import SupplierApiClient
from catalog_sync.clients.bulk_client import BulkFeedClient

__all__ = [
    "SupplierApiClient",
    "BulkFeedClient",
]
