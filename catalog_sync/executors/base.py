"""Abstract sync executor shared by both supplier channels.

An executor owns one channel (API or bulk feed) and implements three
operations per sync type: full, incremental and single-record. The
base class runs every operation inside the same sync-log lifecycle and
provides the batched write loop.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from catalog_sync.config import sync_settings
from catalog_sync.db import operations
from catalog_sync.db.base import async_session_maker
from catalog_sync.errors.exceptions import CatalogSyncError, RateLimitedError
from catalog_sync.models.enums import SyncLogStatus, SyncMethod, SyncMode, SyncType
from catalog_sync.models.records import (
    BulkFeedRecord,
    CatalogRecordData,
    KitComponentData,
    KitFeedRecord,
    PriceRecordData,
    PricingFeedRecord,
)
from catalog_sync.models.sync_results import SyncResult
from catalog_sync.services.transformer import (
    parse_api_payload,
    transform_api_record,
    transform_bulk_feed_record,
    transform_kit_record,
    transform_pricing_record,
)

logger = structlog.get_logger(__name__)

CanonicalRecord = Union[CatalogRecordData, PriceRecordData, KitComponentData]


@dataclass
class SyncRunMetrics:
    """Counters accumulated while a sync run executes."""
    processed: int = 0
    updated: int = 0
    added: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def record_failure(self, message: str, count: int = 1) -> None:
        self.failed += count
        self.errors.append(message)

    def failure_ratio_exceeded(self) -> bool:
        """True when failed items are at least half of the processed items."""
        return self.processed > 0 and self.failed * 2 >= self.processed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "added": self.added,
            "failed": self.failed,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }


def transform_records(
    sync_type: SyncType,
    items: Sequence[Dict[str, Any]],
    source: str,
    metrics: SyncRunMetrics,
) -> List[CanonicalRecord]:
    """Parse raw supplier items into canonical records.

    Items that fail to parse count as processed and failed; the rest
    are returned for writing.

    Args:
        sync_type: Dataset the items belong to
        items: Raw dicts from the channel
        source: "api" or "bulk" (selects the inventory record variant)
        metrics: Run counters to update
    """
    records: List[CanonicalRecord] = []
    for item in items:
        metrics.processed += 1
        try:
            if sync_type is SyncType.PRICING:
                records.append(transform_pricing_record(PricingFeedRecord.model_validate(item)))
            elif sync_type is SyncType.KITS:
                records.append(transform_kit_record(KitFeedRecord.model_validate(item)))
            elif source == SyncMethod.API.value:
                records.append(transform_api_record(parse_api_payload(item)))
            else:
                records.append(transform_bulk_feed_record(BulkFeedRecord.model_validate(item)))
        except (PydanticValidationError, ValueError) as e:
            identifier = item.get("vcpn") or item.get("id") or item.get("kitVcpn") or "unknown"
            metrics.record_failure(f"Invalid {sync_type.value} record {identifier}: {e}")
    return records


async def write_records(
    session,
    sync_type: SyncType,
    records: Sequence[CanonicalRecord],
) -> Tuple[int, int]:
    """Upsert one batch of canonical records into the table of its sync type.

    Returns:
        Tuple of (added, updated)
    """
    if sync_type is SyncType.PRICING:
        return await operations.upsert_price_records(session, records)
    if sync_type is SyncType.KITS:
        return await operations.upsert_kit_components(session, records)
    return await operations.upsert_catalog_items(session, records)


class SyncExecutor(ABC):
    """Abstract base class for channel executors.

    Implementations must provide:
    - sync_full(): refresh the whole dataset of one sync type
    - sync_incremental(): refresh only stale data
    - sync_one(): refresh a single record

    Every operation opens a ``running`` sync log and finalizes it exactly
    once. Rate limiting ends the run as ``rate_limited``; any other
    channel error ends it as ``failed``.
    """

    method: SyncMethod

    def __init__(
        self,
        session_factory: Optional[Callable[[], Any]] = None,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.batch_size = batch_size or sync_settings.batch_size
        self.batch_delay_seconds = (
            sync_settings.batch_delay_seconds if batch_delay_seconds is None else batch_delay_seconds
        )
        self._log = logger.bind(channel=self.method.value)

    @abstractmethod
    async def sync_full(self, sync_type: SyncType, triggered_by: str = "manual") -> SyncResult:
        """Fetch the complete remote dataset and upsert it in batches."""
        pass

    @abstractmethod
    async def sync_incremental(
        self,
        sync_type: SyncType,
        stale_after_hours: Optional[int] = None,
        triggered_by: str = "scheduler",
    ) -> SyncResult:
        """Refresh records older than the staleness threshold."""
        pass

    @abstractmethod
    async def sync_one(self, vcpn: str, triggered_by: str = "manual") -> SyncResult:
        """Fetch and upsert a single catalog record."""
        pass

    async def run(
        self,
        sync_type: SyncType,
        mode: SyncMode,
        triggered_by: str,
        body: Callable[[SyncRunMetrics], Awaitable[Optional[str]]],
    ) -> SyncResult:
        """Execute ``body`` inside the sync-log lifecycle.

        Args:
            sync_type: Dataset being synced
            mode: full, incremental or single
            triggered_by: Who started the run (scheduler, manual, ...)
            body: Coroutine doing the work; may return a failure message
                that fails the run without raising

        Returns:
            SyncResult with counters, status and errors
        """
        log = self._log.bind(sync_type=sync_type.value, mode=mode.value, triggered_by=triggered_by)
        metrics = SyncRunMetrics()

        async with self.session_factory() as session:
            sync_log = await operations.create_sync_log(
                session, sync_type, self.method, mode, triggered_by
            )
            await session.commit()
        sync_log_id = sync_log.id
        log.info("sync_run_started", sync_log_id=str(sync_log_id))

        status = SyncLogStatus.COMPLETED
        error_message: Optional[str] = None
        retry_after: Optional[int] = None
        reset_at: Optional[datetime] = None

        try:
            try:
                failure = await body(metrics)
                if failure:
                    status = SyncLogStatus.FAILED
                    error_message = failure
                    metrics.errors.append(failure)
                elif metrics.failure_ratio_exceeded():
                    status = SyncLogStatus.FAILED
                    error_message = f"{metrics.failed} of {metrics.processed} records failed"
            except RateLimitedError as e:
                status = SyncLogStatus.RATE_LIMITED
                error_message = e.message
                retry_after = e.retry_after_seconds
                if retry_after:
                    reset_at = datetime.fromtimestamp(time.time() + retry_after, tz=timezone.utc)
                metrics.errors.append(e.message)
                log.warning("sync_run_rate_limited", retry_after_seconds=retry_after, error=e.message)
            except CatalogSyncError as e:
                status = SyncLogStatus.FAILED
                error_message = e.message
                metrics.errors.append(e.message)
                log.error("sync_run_aborted", error=e.message, error_type=type(e).__name__)
            except BaseException as e:
                # Cancellation and programming errors still close the log, then propagate
                status = SyncLogStatus.FAILED
                error_message = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
                metrics.errors.append(error_message)
                log.error("sync_run_crashed", error=error_message)
                raise
        finally:
            async with self.session_factory() as session:
                await operations.finalize_sync_log(
                    session,
                    sync_log_id,
                    status,
                    records_processed=metrics.processed,
                    records_updated=metrics.updated,
                    records_added=metrics.added,
                    records_failed=metrics.failed,
                    duration_ms=metrics.duration_ms,
                    error_message=error_message,
                    rate_limit_reset_at=reset_at,
                )
                await session.commit()

        duration_ms = metrics.duration_ms
        log.info("sync_run_finished", status=status.value, **metrics.to_dict())
        return SyncResult(
            success=status is SyncLogStatus.COMPLETED,
            status=status,
            sync_type=sync_type,
            method=self.method,
            mode=mode,
            processed=metrics.processed,
            updated=metrics.updated,
            added=metrics.added,
            failed=metrics.failed,
            errors=metrics.errors,
            duration_ms=duration_ms,
            retry_after_seconds=retry_after,
            message=error_message,
            sync_log_id=str(sync_log_id),
        )

    async def apply_batches(
        self,
        sync_type: SyncType,
        records: Sequence[CanonicalRecord],
        metrics: SyncRunMetrics,
    ) -> None:
        """Write records in fixed-size batches, one session per batch.

        A failed batch counts all of its records as failed and the loop
        moves on to the next batch.
        """
        total_batches = (len(records) + self.batch_size - 1) // self.batch_size
        for index in range(total_batches):
            batch = records[index * self.batch_size:(index + 1) * self.batch_size]
            try:
                async with self.session_factory() as session:
                    added, updated = await write_records(session, sync_type, batch)
                    await session.commit()
                metrics.added += added
                metrics.updated += updated
            except CatalogSyncError as e:
                self._log.error(
                    "batch_write_failed",
                    sync_type=sync_type.value,
                    batch=index + 1,
                    size=len(batch),
                    error=e.message,
                )
                metrics.record_failure(f"Batch {index + 1} failed: {e.message}", count=len(batch))

            if index + 1 < total_batches and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)
