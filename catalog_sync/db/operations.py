"""Database operations for the catalog store and sync bookkeeping.

Writes are batched: one existence query per batch, then one bulk INSERT
and one bulk UPDATE (by primary key) for the partitioned records.
Callers own the session and decide when to commit.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import Select, select, update, insert, delete, func, tuple_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import uuid
import structlog

from catalog_sync.db.models import (
    CatalogItem,
    PriceRecord,
    KitComponent,
    SyncLog,
    PendingUpdateRequest,
    SyncSchedule,
)
from catalog_sync.errors.exceptions import ConflictError, DatabaseError
from catalog_sync.models.enums import (
    ItemSyncStatus,
    RecordState,
    SyncLogStatus,
    SyncMethod,
    SyncMode,
    SyncType,
    UpdateRequestStatus,
)
from catalog_sync.models.records import CatalogRecordData, KitComponentData, PriceRecordData
from catalog_sync.services.transformer import (
    catalog_record_fields,
    kit_component_fields,
    price_record_fields,
)

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _raise_db_error(event: str, message: str, e: Exception, **fields: Any) -> None:
    """Log a failed operation and re-raise it in the service's error taxonomy."""
    logger.error(event, error=str(e), error_type=type(e).__name__, **fields)
    if isinstance(e, IntegrityError):
        raise ConflictError(f"{message}: {e}") from e
    raise DatabaseError(f"{message}: {e}") from e


# =============================================================================
# Catalog store
# =============================================================================


async def find_existing_vcpns(
    session: AsyncSession,
    model: type,
    vcpns: Iterable[str],
) -> Dict[str, uuid.UUID]:
    """Map each vcpn already stored in ``model`` to its row id.

    Args:
        session: Async database session
        model: CatalogItem or PriceRecord
        vcpns: Identifiers to look up (one IN query)

    Returns:
        Dict of vcpn -> id for the identifiers that exist
    """
    keys = list({v for v in vcpns if v})
    if not keys:
        return {}
    try:
        result = await session.execute(
            select(model.vcpn, model.id).where(model.vcpn.in_(keys))
        )
        return {row.vcpn: row.id for row in result.all()}
    except SQLAlchemyError as e:
        _raise_db_error(
            "find_existing_vcpns_failed",
            "Failed to look up existing records",
            e,
            table=model.__tablename__,
            count=len(keys),
        )


def _dedupe(records: Sequence[Any], key) -> List[Any]:
    """Keep the last occurrence of each key, preserving first-seen order."""
    latest: Dict[Any, Any] = {}
    for record in records:
        latest[key(record)] = record
    return list(latest.values())


async def upsert_catalog_items(
    session: AsyncSession,
    records: Sequence[CatalogRecordData],
    upload_id: Optional[str] = None,
    synced_at: Optional[datetime] = None,
) -> Tuple[int, int]:
    """Insert new catalog rows and overwrite existing ones, keyed by vcpn.

    A row that had been soft-deleted is revived by the update.

    Args:
        session: Async database session
        records: Canonical records (duplicates by vcpn: last one wins)
        upload_id: Feed or upload session that produced the records
        synced_at: Sync timestamp (defaults to now)

    Returns:
        Tuple of (added, updated)

    Raises:
        ConflictError: If a uniqueness constraint is violated
        DatabaseError: If the write fails
    """
    records = _dedupe(records, key=lambda r: r.vcpn)
    if not records:
        return 0, 0

    synced_at = synced_at or _now()
    existing = await find_existing_vcpns(session, CatalogItem, (r.vcpn for r in records))

    meta = {
        "sync_status": ItemSyncStatus.SYNCED,
        "last_synced_at": synced_at,
        "sync_error": None,
        "record_state": RecordState.ACTIVE,
        "removed_by_session": None,
        "removed_at": None,
    }
    if upload_id is not None:
        meta["upload_id"] = upload_id
        meta["uploaded_at"] = synced_at

    inserts: List[Dict[str, Any]] = []
    updates: List[Dict[str, Any]] = []
    for record in records:
        row = {**catalog_record_fields(record), **meta}
        if record.vcpn in existing:
            updates.append({"id": existing[record.vcpn], **row})
        else:
            inserts.append(row)

    try:
        if inserts:
            await session.execute(insert(CatalogItem), inserts)
        if updates:
            await session.execute(update(CatalogItem), updates)
    except SQLAlchemyError as e:
        _raise_db_error(
            "upsert_catalog_items_failed",
            "Failed to upsert catalog items",
            e,
            inserts=len(inserts),
            updates=len(updates),
        )

    logger.debug("catalog_items_upserted", added=len(inserts), updated=len(updates))
    return len(inserts), len(updates)


async def upsert_price_records(
    session: AsyncSession,
    records: Sequence[PriceRecordData],
    synced_at: Optional[datetime] = None,
) -> Tuple[int, int]:
    """Write price tiers, superseding every column of an existing row.

    Returns:
        Tuple of (added, updated)
    """
    records = _dedupe(records, key=lambda r: r.vcpn)
    if not records:
        return 0, 0

    synced_at = synced_at or _now()
    existing = await find_existing_vcpns(session, PriceRecord, (r.vcpn for r in records))

    inserts: List[Dict[str, Any]] = []
    updates: List[Dict[str, Any]] = []
    for record in records:
        row = {**price_record_fields(record), "last_synced_at": synced_at}
        if record.vcpn in existing:
            updates.append({"id": existing[record.vcpn], **row})
        else:
            inserts.append(row)

    try:
        if inserts:
            await session.execute(insert(PriceRecord), inserts)
        if updates:
            await session.execute(update(PriceRecord), updates)
    except SQLAlchemyError as e:
        _raise_db_error(
            "upsert_price_records_failed",
            "Failed to upsert price records",
            e,
            inserts=len(inserts),
            updates=len(updates),
        )

    logger.debug("price_records_upserted", added=len(inserts), updated=len(updates))
    return len(inserts), len(updates)


async def upsert_kit_components(
    session: AsyncSession,
    records: Sequence[KitComponentData],
    synced_at: Optional[datetime] = None,
) -> Tuple[int, int]:
    """Write kit component lines keyed by (kit_vcpn, component_vcpn).

    Returns:
        Tuple of (added, updated)
    """
    records = _dedupe(records, key=lambda r: r.key)
    if not records:
        return 0, 0

    synced_at = synced_at or _now()
    pairs = [record.key for record in records]
    try:
        result = await session.execute(
            select(KitComponent.kit_vcpn, KitComponent.component_vcpn, KitComponent.id)
            .where(tuple_(KitComponent.kit_vcpn, KitComponent.component_vcpn).in_(pairs))
        )
        existing = {(row.kit_vcpn, row.component_vcpn): row.id for row in result.all()}
    except SQLAlchemyError as e:
        _raise_db_error("find_existing_kit_components_failed", "Failed to look up kit components", e)

    inserts: List[Dict[str, Any]] = []
    updates: List[Dict[str, Any]] = []
    for record in records:
        row = {**kit_component_fields(record), "last_synced_at": synced_at}
        if record.key in existing:
            updates.append({"id": existing[record.key], **row})
        else:
            inserts.append(row)

    try:
        if inserts:
            await session.execute(insert(KitComponent), inserts)
        if updates:
            await session.execute(update(KitComponent), updates)
    except SQLAlchemyError as e:
        _raise_db_error(
            "upsert_kit_components_failed",
            "Failed to upsert kit components",
            e,
            inserts=len(inserts),
            updates=len(updates),
        )

    logger.debug("kit_components_upserted", added=len(inserts), updated=len(updates))
    return len(inserts), len(updates)


async def replace_kit_components(
    session: AsyncSession,
    kit_vcpn: str,
    records: Sequence[KitComponentData],
) -> Tuple[int, int]:
    """Make a kit's stored components exactly ``records``.

    Lines no longer reported for the kit are deleted; the rest are upserted.

    Returns:
        Tuple of (added, updated)
    """
    keep = [record.component_vcpn for record in records]
    try:
        stmt = delete(KitComponent).where(KitComponent.kit_vcpn == kit_vcpn)
        if keep:
            stmt = stmt.where(KitComponent.component_vcpn.not_in(keep))
        result = await session.execute(stmt)
        if result.rowcount:
            logger.info("kit_components_removed", kit_vcpn=kit_vcpn, count=result.rowcount)
    except SQLAlchemyError as e:
        _raise_db_error("replace_kit_components_failed", "Failed to replace kit components", e, kit_vcpn=kit_vcpn)

    return await upsert_kit_components(session, records)


def stale_items_query(sync_type: SyncType, stale_before: datetime) -> Select:
    """Select active catalog rows whose ``sync_type`` data is stale.

    Each sync type ages by the table it writes:
        inventory: ``catalog_items.last_synced_at``
        pricing: ``price_records.last_synced_at`` (no price row counts as stale)
        kits: the oldest ``kit_components.last_synced_at`` of the kit
              (no component rows counts as stale)

    Oldest first, never-synced rows leading.
    """
    if sync_type is SyncType.PRICING:
        synced_at = PriceRecord.last_synced_at
        stmt = select(CatalogItem).outerjoin(PriceRecord, PriceRecord.vcpn == CatalogItem.vcpn)
    elif sync_type is SyncType.KITS:
        kit_sync = (
            select(
                KitComponent.kit_vcpn.label("kit_vcpn"),
                func.min(KitComponent.last_synced_at).label("synced_at"),
            )
            .group_by(KitComponent.kit_vcpn)
            .subquery("kit_sync")
        )
        synced_at = kit_sync.c.synced_at
        stmt = (
            select(CatalogItem)
            .outerjoin(kit_sync, kit_sync.c.kit_vcpn == CatalogItem.vcpn)
            .where(CatalogItem.is_kit.is_(True))
        )
    else:
        synced_at = CatalogItem.last_synced_at
        stmt = select(CatalogItem)

    return (
        stmt.where(CatalogItem.record_state == RecordState.ACTIVE)
        .where(or_(synced_at.is_(None), synced_at < stale_before))
        .order_by(synced_at.asc().nulls_first())
    )


async def get_stale_items(
    session: AsyncSession,
    stale_before: datetime,
    sync_type: SyncType = SyncType.INVENTORY,
    limit: Optional[int] = None,
) -> List[CatalogItem]:
    """Catalog rows due for an incremental refresh of ``sync_type``."""
    stmt = stale_items_query(sync_type, stale_before)
    if limit:
        stmt = stmt.limit(limit)
    try:
        result = await session.execute(stmt)
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        _raise_db_error("get_stale_items_failed", "Failed to query stale items", e)


async def mark_item_sync_status(
    session: AsyncSession,
    vcpn: str,
    status: ItemSyncStatus,
    error: Optional[str] = None,
) -> bool:
    """Record the per-row outcome of a single-record sync.

    Only a successful sync moves ``last_synced_at``, so failed rows stay
    stale and are picked up again by the next incremental run.

    Returns:
        True if a catalog row was updated
    """
    values: Dict[str, Any] = {"sync_status": status, "sync_error": error}
    if status is ItemSyncStatus.SYNCED:
        values["last_synced_at"] = _now()
    try:
        result = await session.execute(
            update(CatalogItem).where(CatalogItem.vcpn == vcpn).values(**values)
        )
        return bool(result.rowcount)
    except SQLAlchemyError as e:
        _raise_db_error("mark_item_sync_status_failed", "Failed to mark item sync status", e, vcpn=vcpn)


async def update_inventory_levels(
    session: AsyncSession,
    levels: Dict[uuid.UUID, int],
) -> int:
    """Write refreshed quantities for existing catalog rows (one bulk UPDATE).

    Args:
        session: Async database session
        levels: Catalog row id -> quantity reported by the supplier

    Returns:
        Number of rows written
    """
    if not levels:
        return 0
    synced_at = _now()
    rows = [
        {
            "id": item_id,
            "quantity": max(int(quantity), 0),
            "sync_status": ItemSyncStatus.SYNCED,
            "sync_error": None,
            "last_synced_at": synced_at,
        }
        for item_id, quantity in levels.items()
    ]
    try:
        await session.execute(update(CatalogItem), rows)
    except SQLAlchemyError as e:
        _raise_db_error("update_inventory_levels_failed", "Failed to update inventory levels", e, count=len(rows))
    return len(rows)


async def count_records(session: AsyncSession, sync_type: SyncType) -> int:
    """Row count of the dataset a sync type maintains (active rows for inventory)."""
    if sync_type is SyncType.PRICING:
        stmt = select(func.count()).select_from(PriceRecord)
    elif sync_type is SyncType.KITS:
        stmt = select(func.count()).select_from(KitComponent)
    else:
        stmt = (
            select(func.count())
            .select_from(CatalogItem)
            .where(CatalogItem.record_state == RecordState.ACTIVE)
        )
    try:
        result = await session.execute(stmt)
        return int(result.scalar() or 0)
    except SQLAlchemyError as e:
        _raise_db_error("count_records_failed", "Failed to count records", e, sync_type=sync_type.value)


# =============================================================================
# Sync log
# =============================================================================


async def create_sync_log(
    session: AsyncSession,
    sync_type: SyncType,
    channel: SyncMethod,
    mode: SyncMode,
    triggered_by: str = "manual",
) -> SyncLog:
    """Open a sync log entry in ``running`` state."""
    try:
        sync_log = SyncLog(
            sync_type=sync_type,
            channel=channel,
            mode=mode,
            status=SyncLogStatus.RUNNING,
            triggered_by=triggered_by,
            started_at=_now(),
        )
        session.add(sync_log)
        await session.flush()
        logger.debug(
            "sync_log_created",
            sync_log_id=str(sync_log.id),
            sync_type=sync_type.value,
            channel=channel.value,
            mode=mode.value,
        )
        return sync_log
    except SQLAlchemyError as e:
        _raise_db_error("create_sync_log_failed", "Failed to create sync log", e, sync_type=sync_type.value)


async def finalize_sync_log(
    session: AsyncSession,
    sync_log_id: uuid.UUID,
    status: SyncLogStatus,
    records_processed: int = 0,
    records_updated: int = 0,
    records_added: int = 0,
    records_failed: int = 0,
    duration_ms: Optional[int] = None,
    error_message: Optional[str] = None,
    rate_limit_reset_at: Optional[datetime] = None,
) -> bool:
    """Move a running sync log to a terminal status.

    The update only matches rows still ``running``, so a finalized
    entry is never rewritten.

    Returns:
        True if the entry transitioned, False if it was already terminal
    """
    if not status.is_terminal:
        raise ValueError("A sync log can only be finalized with a terminal status")
    try:
        result = await session.execute(
            update(SyncLog)
            .where(SyncLog.id == sync_log_id)
            .where(SyncLog.status == SyncLogStatus.RUNNING)
            .values(
                status=status,
                completed_at=_now(),
                duration_ms=duration_ms,
                records_processed=records_processed,
                records_updated=records_updated,
                records_added=records_added,
                records_failed=records_failed,
                error_message=error_message,
                rate_limit_reset_at=rate_limit_reset_at,
            )
        )
    except SQLAlchemyError as e:
        _raise_db_error("finalize_sync_log_failed", "Failed to finalize sync log", e, sync_log_id=str(sync_log_id))

    transitioned = bool(result.rowcount)
    if not transitioned:
        logger.warning("sync_log_already_finalized", sync_log_id=str(sync_log_id), status=status.value)
    return transitioned


async def get_recent_sync_logs(
    session: AsyncSession,
    sync_type: Optional[SyncType] = None,
    limit: int = 20,
    since: Optional[datetime] = None,
) -> List[SyncLog]:
    """Most recent sync log entries, newest first."""
    stmt = select(SyncLog).order_by(SyncLog.started_at.desc()).limit(limit)
    if sync_type is not None:
        stmt = stmt.where(SyncLog.sync_type == sync_type)
    if since is not None:
        stmt = stmt.where(SyncLog.started_at >= since)
    try:
        result = await session.execute(stmt)
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        _raise_db_error("get_recent_sync_logs_failed", "Failed to query sync logs", e)


async def get_last_completed_sync(
    session: AsyncSession,
    sync_type: Optional[SyncType] = None,
    mode: Optional[SyncMode] = None,
) -> Optional[SyncLog]:
    """Latest ``completed`` sync log, optionally filtered by type and mode."""
    stmt = (
        select(SyncLog)
        .where(SyncLog.status == SyncLogStatus.COMPLETED)
        .order_by(SyncLog.completed_at.desc())
        .limit(1)
    )
    if sync_type is not None:
        stmt = stmt.where(SyncLog.sync_type == sync_type)
    if mode is not None:
        stmt = stmt.where(SyncLog.mode == mode)
    try:
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        _raise_db_error("get_last_completed_sync_failed", "Failed to query last completed sync", e)


async def count_recent_api_errors(
    session: AsyncSession,
    sync_type: SyncType,
    since: datetime,
) -> int:
    """Failed sync logs with an error message since ``since``."""
    try:
        result = await session.execute(
            select(func.count())
            .select_from(SyncLog)
            .where(SyncLog.sync_type == sync_type)
            .where(SyncLog.status == SyncLogStatus.FAILED)
            .where(SyncLog.error_message.is_not(None))
            .where(SyncLog.started_at >= since)
        )
        return int(result.scalar() or 0)
    except SQLAlchemyError as e:
        _raise_db_error("count_recent_api_errors_failed", "Failed to count recent API errors", e)


# =============================================================================
# Pending update requests
# =============================================================================


async def create_update_request(
    session: AsyncSession,
    vcpn: str,
    priority: int = 5,
    requested_by: str = "user",
) -> PendingUpdateRequest:
    """Queue a single-record refresh."""
    try:
        request = PendingUpdateRequest(
            vcpn=vcpn,
            priority=priority,
            requested_by=requested_by,
            status=UpdateRequestStatus.PENDING,
            attempts=0,
            created_at=_now(),
        )
        session.add(request)
        await session.flush()
        logger.info("update_request_queued", request_id=str(request.id), vcpn=vcpn, priority=priority)
        return request
    except SQLAlchemyError as e:
        _raise_db_error("create_update_request_failed", "Failed to queue update request", e, vcpn=vcpn)


async def claim_pending_requests(
    session: AsyncSession,
    limit: int,
) -> List[PendingUpdateRequest]:
    """Take up to ``limit`` pending requests, highest priority then oldest first.

    Claimed requests move to ``processing`` and have ``attempts`` incremented.
    """
    try:
        result = await session.execute(
            select(PendingUpdateRequest)
            .where(PendingUpdateRequest.status == UpdateRequestStatus.PENDING)
            .order_by(PendingUpdateRequest.priority.desc(), PendingUpdateRequest.created_at.asc())
            .limit(limit)
        )
        requests = list(result.scalars().all())
        for request in requests:
            request.status = UpdateRequestStatus.PROCESSING
            request.attempts = (request.attempts or 0) + 1
        await session.flush()
        return requests
    except SQLAlchemyError as e:
        _raise_db_error("claim_pending_requests_failed", "Failed to claim pending requests", e)


async def complete_update_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    success: bool,
    error_message: Optional[str] = None,
) -> None:
    """Write back the outcome of a processed request."""
    try:
        await session.execute(
            update(PendingUpdateRequest)
            .where(PendingUpdateRequest.id == request_id)
            .values(
                status=UpdateRequestStatus.COMPLETED if success else UpdateRequestStatus.FAILED,
                error_message=None if success else error_message,
                processed_at=_now(),
            )
        )
    except SQLAlchemyError as e:
        _raise_db_error(
            "complete_update_request_failed",
            "Failed to update request status",
            e,
            request_id=str(request_id),
        )


async def count_pending_requests(session: AsyncSession) -> int:
    try:
        result = await session.execute(
            select(func.count())
            .select_from(PendingUpdateRequest)
            .where(PendingUpdateRequest.status == UpdateRequestStatus.PENDING)
        )
        return int(result.scalar() or 0)
    except SQLAlchemyError as e:
        _raise_db_error("count_pending_requests_failed", "Failed to count pending requests", e)


# =============================================================================
# Scheduler job state
# =============================================================================


async def save_schedule(
    session: AsyncSession,
    job_name: str,
    schedule: str,
    enabled: bool,
    sync_type: str = "all",
    next_run_at: Optional[datetime] = None,
) -> SyncSchedule:
    """Create or update the persisted row of a scheduler job."""
    try:
        result = await session.execute(select(SyncSchedule).where(SyncSchedule.job_name == job_name))
        row = result.scalar_one_or_none()
        if row is None:
            row = SyncSchedule(job_name=job_name, retry_count=0)
            session.add(row)
        row.schedule = schedule
        row.enabled = enabled
        row.sync_type = sync_type
        row.next_run_at = next_run_at
        await session.flush()
        return row
    except SQLAlchemyError as e:
        _raise_db_error("save_schedule_failed", "Failed to save schedule", e, job_name=job_name)


async def record_schedule_run(
    session: AsyncSession,
    job_name: str,
    last_run_at: datetime,
    next_run_at: Optional[datetime],
    retry_count: int = 0,
    last_error: Optional[str] = None,
) -> None:
    """Store the outcome of a scheduler job run."""
    try:
        await session.execute(
            update(SyncSchedule)
            .where(SyncSchedule.job_name == job_name)
            .values(
                last_run_at=last_run_at,
                next_run_at=next_run_at,
                retry_count=retry_count,
                last_error=last_error,
            )
        )
    except SQLAlchemyError as e:
        _raise_db_error("record_schedule_run_failed", "Failed to record schedule run", e, job_name=job_name)
