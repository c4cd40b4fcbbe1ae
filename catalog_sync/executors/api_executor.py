"""Sync executor for the supplier's rate-limited request/response API."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from catalog_sync.clients.api_client import SupplierApiClient
from catalog_sync.config import sync_settings
from catalog_sync.db import operations
from catalog_sync.db.models import CatalogItem
from catalog_sync.errors.exceptions import CatalogSyncError, RateLimitedError, TransportError
from catalog_sync.executors.base import SyncExecutor, SyncRunMetrics, transform_records
from catalog_sync.models.enums import (
    ItemSyncStatus,
    SyncMethod,
    SyncMode,
    SyncType,
    SYNC_TYPE_ENDPOINTS,
)
from catalog_sync.models.records import KitFeedRecord, PricingFeedRecord
from catalog_sync.models.sync_results import ApiResponse, SyncResult
from catalog_sync.services.rate_limit import RateLimitGate
from catalog_sync.services.transformer import (
    parse_api_payload,
    transform_api_record,
    transform_kit_record,
    transform_pricing_record,
)

logger = structlog.get_logger(__name__)


def _as_items(data: Any) -> List[Dict[str, Any]]:
    """Normalize a list payload (bare list or {"items": [...]})."""
    if isinstance(data, dict):
        data = data.get("items") or data.get("results") or []
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def _as_record(data: Any) -> Optional[Dict[str, Any]]:
    """Normalize a single-record payload (dict or one-element list)."""
    if isinstance(data, list):
        data = data[0] if data else None
    return data if isinstance(data, dict) else None


def _quantity_of(data: Dict[str, Any]) -> Optional[int]:
    for key in ("quantity", "quantity_available", "quantityAvailable", "available", "totalQty"):
        value = data.get(key)
        if value is None or value == "":
            continue
        try:
            return int(float(value))
        except (TypeError, ValueError):
            continue
    return None


class ApiSyncExecutor(SyncExecutor):
    """Executes syncs through the supplier API.

    Full syncs page through ``search``; incremental syncs refresh stale
    catalog rows one call at a time in small batches. Every operation
    checks the rate-limit gate before touching the network.
    """

    method = SyncMethod.API

    def __init__(
        self,
        client: SupplierApiClient,
        gate: RateLimitGate,
        session_factory=None,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
        incremental_batch_size: Optional[int] = None,
        incremental_batch_delay_seconds: Optional[float] = None,
    ):
        super().__init__(session_factory, batch_size, batch_delay_seconds)
        self.client = client
        self.gate = gate
        self.page_size = page_size or sync_settings.api_page_size
        self.incremental_batch_size = incremental_batch_size or sync_settings.incremental_batch_size
        self.incremental_batch_delay_seconds = (
            sync_settings.incremental_batch_delay_seconds
            if incremental_batch_delay_seconds is None
            else incremental_batch_delay_seconds
        )

    def _check_gate(self, endpoint: str) -> None:
        if self.gate.is_limited(endpoint):
            remaining = self.gate.remaining_cooldown(endpoint)
            raise RateLimitedError(
                f"API rate limited on {endpoint}. Retry in {remaining}s",
                endpoint=endpoint,
                retry_after_seconds=remaining,
            )

    # -------------------------------------------------------------------------
    # Full
    # -------------------------------------------------------------------------

    async def sync_full(self, sync_type: SyncType, triggered_by: str = "manual") -> SyncResult:
        async def body(metrics: SyncRunMetrics) -> Optional[str]:
            self._check_gate(SYNC_TYPE_ENDPOINTS[sync_type])
            page = 1
            while True:
                response = await self.client.search(sync_type, page=page, page_size=self.page_size)
                if not response.success:
                    raise TransportError(
                        f"API search failed on page {page}: {response.error or 'unknown error'}"
                    )
                items = _as_items(response.data)
                if not items:
                    break
                records = transform_records(sync_type, items, SyncMethod.API.value, metrics)
                await self.apply_batches(sync_type, records, metrics)
                if len(items) < self.page_size:
                    break
                page += 1
            return None

        return await self.run(sync_type, SyncMode.FULL, triggered_by, body)

    # -------------------------------------------------------------------------
    # Incremental
    # -------------------------------------------------------------------------

    async def sync_incremental(
        self,
        sync_type: SyncType,
        stale_after_hours: Optional[int] = None,
        triggered_by: str = "scheduler",
    ) -> SyncResult:
        hours = stale_after_hours or sync_settings.stale_threshold_hours

        async def body(metrics: SyncRunMetrics) -> Optional[str]:
            self._check_gate(SYNC_TYPE_ENDPOINTS[sync_type])
            stale_before = datetime.now(timezone.utc) - timedelta(hours=hours)
            async with self.session_factory() as session:
                items = await operations.get_stale_items(session, stale_before, sync_type=sync_type)
            self._log.info(
                "incremental_candidates_selected",
                sync_type=sync_type.value,
                count=len(items),
                stale_after_hours=hours,
            )

            size = self.incremental_batch_size
            for start in range(0, len(items), size):
                batch = items[start:start + size]
                await self._refresh_batch(sync_type, batch, metrics)
                if start + size < len(items) and self.incremental_batch_delay_seconds > 0:
                    await asyncio.sleep(self.incremental_batch_delay_seconds)
            return None

        return await self.run(sync_type, SyncMode.INCREMENTAL, triggered_by, body)

    async def _fetch_for(self, sync_type: SyncType, vcpn: str) -> ApiResponse:
        if sync_type is SyncType.PRICING:
            return await self.client.get_pricing(vcpn)
        if sync_type is SyncType.KITS:
            return await self.client.get_kit_components(vcpn)
        return await self.client.check_inventory(vcpn)

    async def _refresh_batch(
        self,
        sync_type: SyncType,
        items: List[CatalogItem],
        metrics: SyncRunMetrics,
    ) -> None:
        """Refresh one small batch of stale rows; one API call per row."""
        levels: Dict[Any, int] = {}
        prices = []
        status_updates: Dict[str, tuple] = {}

        for item in items:
            metrics.processed += 1
            response = await self._fetch_for(sync_type, item.vcpn)
            if not response.success:
                status = ItemSyncStatus.NOT_FOUND if response.not_found else ItemSyncStatus.ERROR
                status_updates[item.vcpn] = (status, response.error)
                if status is ItemSyncStatus.ERROR:
                    metrics.record_failure(f"{item.vcpn}: {response.error}")
                continue

            try:
                if sync_type is SyncType.PRICING:
                    payload = _as_record(response.data) or {}
                    prices.append(transform_pricing_record(
                        PricingFeedRecord.model_validate({"vcpn": item.vcpn, **payload})
                    ))
                elif sync_type is SyncType.KITS:
                    components = [
                        transform_kit_record(KitFeedRecord.model_validate({"kitVcpn": item.vcpn, **row}))
                        for row in _as_items(response.data)
                    ]
                    async with self.session_factory() as session:
                        added, updated = await operations.replace_kit_components(
                            session, item.vcpn, components
                        )
                        await session.commit()
                    metrics.added += added
                    metrics.updated += updated
                else:
                    quantity = _quantity_of(_as_record(response.data) or {})
                    if quantity is None:
                        metrics.record_failure(f"{item.vcpn}: inventory response has no quantity")
                        continue
                    levels[item.id] = quantity
            except (PydanticValidationError, ValueError) as e:
                metrics.record_failure(f"{item.vcpn}: {e}")
            except CatalogSyncError as e:
                metrics.record_failure(f"{item.vcpn}: {e.message}")

        try:
            async with self.session_factory() as session:
                if levels:
                    metrics.updated += await operations.update_inventory_levels(session, levels)
                if prices:
                    added, updated = await operations.upsert_price_records(session, prices)
                    metrics.added += added
                    metrics.updated += updated
                for vcpn, (status, error) in status_updates.items():
                    await operations.mark_item_sync_status(session, vcpn, status, error)
                await session.commit()
        except CatalogSyncError as e:
            self._log.error("batch_write_failed", sync_type=sync_type.value, size=len(items), error=e.message)
            metrics.record_failure(f"Batch write failed: {e.message}", count=len(levels) + len(prices))

    # -------------------------------------------------------------------------
    # Single record
    # -------------------------------------------------------------------------

    async def sync_one(self, vcpn: str, triggered_by: str = "manual") -> SyncResult:
        async def body(metrics: SyncRunMetrics) -> Optional[str]:
            self._check_gate(SYNC_TYPE_ENDPOINTS[SyncType.INVENTORY])
            metrics.processed = 1
            try:
                response = await self.client.get_details(vcpn)
            except TransportError as e:
                await self._mark(vcpn, ItemSyncStatus.ERROR, e.message)
                raise

            if not response.success:
                status = ItemSyncStatus.NOT_FOUND if response.not_found else ItemSyncStatus.ERROR
                await self._mark(vcpn, status, response.error)
                metrics.failed = 1
                if status is ItemSyncStatus.NOT_FOUND:
                    return f"Part {vcpn} not found"
                return f"Failed to fetch part {vcpn}: {response.error}"

            payload = _as_record(response.data) or {}
            try:
                record = transform_api_record(parse_api_payload({"vcpn": vcpn, **payload}))
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
