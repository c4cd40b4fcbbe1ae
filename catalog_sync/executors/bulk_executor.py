"""Sync executor for the supplier's bulk file-transfer feed."""
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from catalog_sync.clients.bulk_client import BulkFeedClient
from catalog_sync.config import sync_settings
from catalog_sync.db import operations
from catalog_sync.errors.exceptions import TransportError
from catalog_sync.executors.base import SyncExecutor, SyncRunMetrics, transform_records
from catalog_sync.models.enums import ItemSyncStatus, SyncMethod, SyncMode, SyncType
from catalog_sync.models.records import BulkFeedRecord
from catalog_sync.models.sync_results import BulkFetchResult, SyncResult
from catalog_sync.services.transformer import transform_bulk_feed_record

logger = structlog.get_logger(__name__)


class BulkSyncExecutor(SyncExecutor):
    """Executes syncs through the bulk feed.

    The feed always returns whole datasets (optionally filtered by
    change date), so every operation is one download followed by
    batched upserts.
    """

    method = SyncMethod.BULK

    def __init__(
        self,
        client: BulkFeedClient,
        session_factory=None,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
    ):
        super().__init__(session_factory, batch_size, batch_delay_seconds)
        self.client = client

    async def _fetch(
        self,
        sync_type: SyncType,
        force_refresh: bool = False,
        date_filter: Optional[datetime] = None,
    ) -> BulkFetchResult:
        result = await self.client.fetch(
            sync_type,
            force_refresh=force_refresh,
            batch_size=self.batch_size,
            date_filter=date_filter,
        )
        if not result.success:
            raise TransportError(
                f"Bulk feed fetch failed for {sync_type.value}: {'; '.join(result.errors) or 'unknown error'}"
            )
        return result

    async def sync_full(self, sync_type: SyncType, triggered_by: str = "manual") -> SyncResult:
        async def body(metrics: SyncRunMetrics) -> Optional[str]:
            result = await self._fetch(sync_type, force_refresh=True)
            records = transform_records(sync_type, result.data, SyncMethod.BULK.value, metrics)
            await self.apply_batches(sync_type, records, metrics)
            return None

        return await self.run(sync_type, SyncMode.FULL, triggered_by, body)

    async def sync_incremental(
        self,
        sync_type: SyncType,
        stale_after_hours: Optional[int] = None,
        triggered_by: str = "scheduler",
    ) -> SyncResult:
        hours = stale_after_hours or sync_settings.stale_threshold_hours

        async def body(metrics: SyncRunMetrics) -> Optional[str]:
            since = datetime.now(timezone.utc) - timedelta(hours=hours)
            result = await self._fetch(sync_type, date_filter=since)
            records = transform_records(sync_type, result.data, SyncMethod.BULK.value, metrics)
            await self.apply_batches(sync_type, records, metrics)
            return None

        return await self.run(sync_type, SyncMode.INCREMENTAL, triggered_by, body)

    async def sync_one(self, vcpn: str, triggered_by: str = "manual") -> SyncResult:
        """Resolve one record by scanning the inventory feed."""
        async def body(metrics: SyncRunMetrics) -> Optional[str]:
            metrics.processed = 1
            try:
                result = await self._fetch(SyncType.INVENTORY)
            except TransportError as e:
                await self._mark(vcpn, ItemSyncStatus.ERROR, e.message)
                raise

            match = next(
                (item for item in result.data if str(item.get("vcpn", "")).strip() == vcpn),
                None,
            )
            if match is None:
                await self._mark(vcpn, ItemSyncStatus.NOT_FOUND, "Not found in bulk feed")
                metrics.failed = 1
                return f"Part {vcpn} not found"

            try:
                record = transform_bulk_feed_record(BulkFeedRecord.model_validate(match))
            except (PydanticValidationError, ValueError) as e:
                await self._mark(vcpn, ItemSyncStatus.ERROR, str(e))
                metrics.failed = 1
                return f"Invalid record for {vcpn}: {e}"

            async with self.session_factory() as session:
                added, updated = await operations.upsert_catalog_items(session, [record])
                await session.commit()
            metrics.added, metrics.updated = added, updated
            return None

        return await self.run(SyncType.INVENTORY, SyncMode.SINGLE, triggered_by, body)

    async def _mark(self, vcpn: str, status: ItemSyncStatus, error: Optional[str]) -> None:
        async with self.session_factory() as session:
            await operations.mark_item_sync_status(session, vcpn, status, error)
            await session.commit()
