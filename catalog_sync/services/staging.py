"""Bulk upload staging and reconciliation.

An uploaded bulk file moves through parsing -> validating -> staging ->
syncing -> completed. Every row is kept as a StagingRecord; only rows
that are valid and needed no correction are committed automatically.
Corrected and invalid rows wait for operator review
(``update_staging_record`` then ``reconcile_record``).
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union
import uuid

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.config import sync_settings
from catalog_sync.db.base import async_session_maker
from catalog_sync.db.models import CatalogItem, StagingRecord, UploadSession
from catalog_sync.db.operations import upsert_catalog_items
from catalog_sync.errors.exceptions import (
    CatalogSyncError,
    RecordNotFoundError,
    ValidationError,
)
from catalog_sync.models.bulk_file import (
    ProcessedRecord,
    ReconciliationSummary,
    StagingFilter,
    UploadResult,
)
from catalog_sync.models.enums import (
    RecordState,
    StagingAction,
    StagingStatus,
    UploadStage,
    UploadStatus,
)
from catalog_sync.models.records import BulkFileRecord
from catalog_sync.services.transformer import transform_bulk_file_record
from catalog_sync.services.validation import derive_composite_key, normalize_identifier, process_bulk_file

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Staging
# =============================================================================


def build_staging_record(session_id: uuid.UUID, record: ProcessedRecord) -> StagingRecord:
    """StagingRecord for one processed row (not yet added to a session)."""
    validation = record.validation
    return StagingRecord(
        session_id=session_id,
        row_number=record.row_number,
        vcpn=record.data.vcpn or None,
        original_data=dict(record.original),
        processed_data=record.data.model_dump(mode="json"),
        validation_status=StagingStatus.VALID if validation.is_valid else StagingStatus.INVALID,
        corrected=validation.corrected,
        needs_review=record.needs_review,
        validation_notes="; ".join(validation.notes + validation.errors) or None,
        action_type=StagingAction.UNKNOWN,
    )


async def create_staging_records(
    session: AsyncSession,
    session_id: uuid.UUID,
    records: Sequence[ProcessedRecord],
    batch_size: Optional[int] = None,
) -> int:
    """Persist one staging row per processed record, flushing in batches.

    Returns:
        Number of staging records created
    """
    batch_size = batch_size or sync_settings.staging_batch_size
    created = 0
    for start in range(0, len(records), batch_size):
        batch = [build_staging_record(session_id, record) for record in records[start:start + batch_size]]
        session.add_all(batch)
        await session.flush()
        created += len(batch)
        logger.debug("staging_batch_created", session_id=str(session_id), count=len(batch))
    logger.info("staging_records_created", session_id=str(session_id), count=created)
    return created


async def _active_ids_by_vcpn(session: AsyncSession, vcpns: Iterable[str]) -> Dict[str, uuid.UUID]:
    keys = list({v for v in vcpns if v})
    if not keys:
        return {}
    result = await session.execute(
        select(CatalogItem.vcpn, CatalogItem.id)
        .where(CatalogItem.record_state == RecordState.ACTIVE)
        .where(CatalogItem.vcpn.in_(keys))
    )
    return {row.vcpn: row.id for row in result.all()}


async def classify_actions(session: AsyncSession, session_id: uuid.UUID) -> Dict[str, int]:
    """Label each valid staging row insert or update against active catalog rows.

    Returns:
        Counts keyed by action ("insert", "update")
    """
    result = await session.execute(
        select(StagingRecord)
        .where(StagingRecord.session_id == session_id)
        .where(StagingRecord.validation_status == StagingStatus.VALID)
    )
    records = list(result.scalars().all())
    existing = await _active_ids_by_vcpn(session, (r.vcpn for r in records))

    counts = {StagingAction.INSERT.value: 0, StagingAction.UPDATE.value: 0}
    for record in records:
        item_id = existing.get(record.vcpn)
        record.action_type = StagingAction.UPDATE if item_id else StagingAction.INSERT
        record.existing_item_id = item_id
        counts[record.action_type.value] += 1
    await session.flush()

    logger.info("staging_actions_classified", session_id=str(session_id), **counts)
    return counts


# =============================================================================
# Reconciliation
# =============================================================================


async def _commit_staging_record(session: AsyncSession, record: StagingRecord) -> StagingAction:
    """Write one valid staging row to the catalog and mark it processed."""
    if record.action_type is StagingAction.UNKNOWN:
        existing = await _active_ids_by_vcpn(session, [record.vcpn])
        record.existing_item_id = existing.get(record.vcpn)
        record.action_type = StagingAction.UPDATE if record.existing_item_id else StagingAction.INSERT

    try:
        data = transform_bulk_file_record(BulkFileRecord.model_validate(record.processed_data))
    except (PydanticValidationError, ValueError) as e:
        raise ValidationError(f"Row {record.row_number} cannot be mapped to a catalog record: {e}") from e

    added, _ = await upsert_catalog_items(session, [data], upload_id=str(record.session_id))
    action = StagingAction.INSERT if added else StagingAction.UPDATE

    record.action_type = action
    record.validation_status = StagingStatus.PROCESSED
    record.processed_at = _now()
    await session.flush()
    return action


async def reconcile_record(session: AsyncSession, record_id: uuid.UUID) -> StagingAction:
    """Commit one staging record into the catalog.

    Args:
        session: Async database session
        record_id: Staging record to commit

    Returns:
        The action applied (insert or update)

    Raises:
        RecordNotFoundError: If the staging record does not exist
        ValidationError: If the record is not in ``valid`` state
    """
    record = await session.get(StagingRecord, record_id)
    if record is None:
        raise RecordNotFoundError(f"Staging record {record_id} not found")
    if record.validation_status is not StagingStatus.VALID:
        raise ValidationError(
            f"Staging record {record_id} is {record.validation_status.value}; only valid records can be reconciled"
        )

    action = await _commit_staging_record(session, record)
    logger.info(
        "staging_record_reconciled",
        record_id=str(record_id),
        vcpn=record.vcpn,
        action=action.value,
    )
    return action


async def reconcile_session(session: AsyncSession, session_id: uuid.UUID) -> ReconciliationSummary:
    """Commit every valid, uncorrected staging row of an upload session.

    Corrected and invalid rows are skipped and left for review.
    Per-record failures are collected in ``errors``.
    """
    result = await session.execute(
        select(StagingRecord)
        .where(StagingRecord.session_id == session_id)
        .order_by(StagingRecord.row_number)
    )
    records = list(result.scalars().all())
    summary = ReconciliationSummary(total=len(records))

    for record in records:
        if (
            record.validation_status is not StagingStatus.VALID
            or record.corrected
            or record.needs_review
        ):
            summary.skipped += 1
            continue
        try:
            async with session.begin_nested():
                action = await _commit_staging_record(session, record)
        except CatalogSyncError as e:
            summary.errors.append(f"Row {record.row_number}: {e.message}")
            logger.warning(
                "staging_record_reconcile_failed",
                session_id=str(session_id),
                row_number=record.row_number,
                error=e.message,
            )
            continue
        if action is StagingAction.INSERT:
            summary.inserted += 1
        else:
            summary.updated += 1

    logger.info(
        "upload_session_reconciled",
        session_id=str(session_id),
        total=summary.total,
        inserted=summary.inserted,
        updated=summary.updated,
        skipped=summary.skipped,
        errors=len(summary.errors),
    )
    return summary


async def mark_removed_records(
    session: AsyncSession,
    session_id: uuid.UUID,
    valid_keys: Iterable[str],
) -> int:
    """Soft-delete upload-sourced catalog rows absent from the latest file.

    Only active rows that came from an upload (``upload_id`` set) are
    touched. An empty key set removes nothing.

    Returns:
        Number of rows marked removed
    """
    keys = list({key for key in valid_keys if key})
    if not keys:
        logger.warning("mark_removed_skipped_no_keys", session_id=str(session_id))
        return 0

    result = await session.execute(
        update(CatalogItem)
        .where(CatalogItem.record_state == RecordState.ACTIVE)
        .where(CatalogItem.upload_id.is_not(None))
        .where(CatalogItem.vcpn.not_in(keys))
        .values(
            record_state=RecordState.REMOVED,
            removed_by_session=session_id,
            removed_at=_now(),
        )
        .execution_options(synchronize_session=False)
    )
    removed = result.rowcount or 0
    logger.info("catalog_items_marked_removed", session_id=str(session_id), count=removed)
    return removed


async def restore_removed_items(session: AsyncSession, session_id: uuid.UUID) -> int:
    """Undo the soft deletions made by one upload session.

    Returns:
        Number of rows restored
    """
    result = await session.execute(
        update(CatalogItem)
        .where(CatalogItem.removed_by_session == session_id)
        .where(CatalogItem.record_state == RecordState.REMOVED)
        .values(record_state=RecordState.ACTIVE, removed_by_session=None, removed_at=None)
        .execution_options(synchronize_session=False)
    )
    restored = result.rowcount or 0
    logger.info("catalog_items_restored", session_id=str(session_id), count=restored)
    return restored


# =============================================================================
# Review
# =============================================================================


async def get_staging_records(
    session: AsyncSession,
    session_id: uuid.UUID,
    filters: Optional[StagingFilter] = None,
) -> List[StagingRecord]:
    """Staging rows of a session, ordered by row number."""
    stmt = select(StagingRecord).where(StagingRecord.session_id == session_id)
    if filters is not None:
        if filters.validation_status is not None:
            stmt = stmt.where(StagingRecord.validation_status == filters.validation_status)
        if filters.needs_review is not None:
            stmt = stmt.where(StagingRecord.needs_review.is_(filters.needs_review))
        if filters.action_type is not None:
            stmt = stmt.where(StagingRecord.action_type == filters.action_type)
    result = await session.execute(stmt.order_by(StagingRecord.row_number))
    return list(result.scalars().all())


async def update_staging_record(
    session: AsyncSession,
    record_id: uuid.UUID,
    updates: Dict[str, Any],
) -> StagingRecord:
    """Apply an operator's edits to a staging row and re-validate it.

    The composite key is re-derived from the edited vendor code and part
    number; the row leaves review and becomes ready to reconcile if both
    are present.

    Raises:
        RecordNotFoundError: If the staging record does not exist
        ValidationError: If the record was already processed or the edits are malformed
    """
    record = await session.get(StagingRecord, record_id)
    if record is None:
        raise RecordNotFoundError(f"Staging record {record_id} not found")
    if record.validation_status is StagingStatus.PROCESSED:
        raise ValidationError(f"Staging record {record_id} was already reconciled")

    merged = {**(record.processed_data or {}), **updates}
    merged["vendor_code"] = str(merged.get("vendor_code") or "").strip()
    merged["part_number"] = normalize_identifier(merged.get("part_number"))
    errors: List[str] = []
    if not merged["vendor_code"]:
        errors.append("VendorCode is required")
    if not merged["part_number"]:
        errors.append("PartNumber (SKU) is required")
    if not errors:
        merged["vcpn"] = derive_composite_key(merged["vendor_code"], merged["part_number"])

    try:
        data = BulkFileRecord.model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid staging record edits: {e}") from e

    record.processed_data = data.model_dump(mode="json")
    record.vcpn = data.vcpn or None
    record.validation_status = StagingStatus.INVALID if errors else StagingStatus.VALID
    record.corrected = False
    record.needs_review = bool(errors)
    record.validation_notes = "; ".join(["Edited during review"] + errors)
    record.action_type = StagingAction.UNKNOWN
    record.existing_item_id = None
    await session.flush()

    logger.info(
        "staging_record_updated",
        record_id=str(record_id),
        fields=sorted(updates),
        valid=not errors,
    )
    return record


# =============================================================================
# Upload sessions
# =============================================================================


async def _set_stage(session: AsyncSession, upload: UploadSession, stage: UploadStage) -> None:
    upload.stage = stage
    await session.commit()
    logger.debug("upload_stage_changed", session_id=str(upload.id), stage=stage.value)


async def upload_bulk_file(
    content: Union[str, bytes],
    filename: str,
    uploaded_by: Optional[str] = None,
    auto_sync: bool = True,
    session_factory: Optional[Callable[[], Any]] = None,
) -> UploadResult:
    """Validate, stage and (optionally) reconcile an uploaded bulk file.

    Args:
        content: Raw file content
        filename: Original file name
        uploaded_by: Operator identifier
        auto_sync: Commit clean rows and soft-delete rows absent from the file
        session_factory: Session factory (defaults to the global one)

    Returns:
        UploadResult with the session id, validation summary and
        reconciliation summary (None when auto_sync is off)

    Raises:
        MalformedInputError: If the file is rejected; the session is marked failed
        DatabaseError: If persistence fails; the session is marked failed
    """
    session_factory = session_factory or async_session_maker
    size = len(content.encode("utf-8") if isinstance(content, str) else content)

    async with session_factory() as session:
        upload = UploadSession(
            filename=filename,
            file_size=size,
            uploaded_by=uploaded_by,
            status=UploadStatus.PROCESSING,
            stage=UploadStage.PARSING,
        )
        session.add(upload)
        await session.flush()
        session_id = upload.id
        await session.commit()

        log = logger.bind(session_id=str(session_id), filename=filename)
        log.info("bulk_upload_started", file_size=size, auto_sync=auto_sync)

        try:
            parsed = process_bulk_file(content)
            summary = parsed.summary

            await _set_stage(session, upload, UploadStage.VALIDATING)
            upload.total_records = summary.total
            upload.valid_records = summary.valid
            upload.invalid_records = summary.invalid
            upload.corrected_records = summary.corrected

            await _set_stage(session, upload, UploadStage.STAGING)
            await create_staging_records(session, session_id, parsed.records)
            await classify_actions(session, session_id)
            await session.commit()

            reconciliation: Optional[ReconciliationSummary] = None
            if auto_sync:
                await _set_stage(session, upload, UploadStage.SYNCING)
                reconciliation = await reconcile_session(session, session_id)
                valid_keys = [r.data.vcpn for r in parsed.records if r.validation.is_valid]
                reconciliation.deleted = await mark_removed_records(session, session_id, valid_keys)
                upload.processed_records = reconciliation.inserted + reconciliation.updated

            upload.stage = UploadStage.COMPLETED
            upload.status = UploadStatus.COMPLETED
            upload.completed_at = _now()
            await session.commit()

        except Exception as e:
            await session.rollback()
            await session.execute(
                update(UploadSession)
                .where(UploadSession.id == session_id)
                .values(
                    status=UploadStatus.FAILED,
                    error_message=str(e),
                    completed_at=_now(),
                )
            )
            await session.commit()
            log.error("bulk_upload_failed", error=str(e), error_type=type(e).__name__)
            raise

    log.info(
        "bulk_upload_completed",
        total=summary.total,
        valid=summary.valid,
        invalid=summary.invalid,
        corrected=summary.corrected,
        inserted=reconciliation.inserted if reconciliation else 0,
        updated=reconciliation.updated if reconciliation else 0,
        deleted=reconciliation.deleted if reconciliation else 0,
    )
    return UploadResult(session_id=session_id, summary=summary, reconciliation=reconciliation)


async def get_recent_upload_sessions(
    session: AsyncSession,
    uploaded_by: Optional[str] = None,
    limit: int = 10,
) -> List[UploadSession]:
    """Most recent upload sessions, newest first."""
    stmt = select(UploadSession).order_by(UploadSession.created_at.desc()).limit(limit)
    if uploaded_by is not None:
        stmt = stmt.where(UploadSession.uploaded_by == uploaded_by)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def cancel_upload_session(session: AsyncSession, session_id: uuid.UUID) -> UploadSession:
    """Cancel an upload session that has not finished.

    Raises:
        RecordNotFoundError: If the session does not exist
        ValidationError: If the session already completed or failed
    """
    upload = await session.get(UploadSession, session_id)
    if upload is None:
        raise RecordNotFoundError(f"Upload session {session_id} not found")
    if upload.status is not UploadStatus.PROCESSING:
        raise ValidationError(f"Upload session {session_id} is {upload.status.value} and cannot be cancelled")

    upload.status = UploadStatus.CANCELLED
    upload.completed_at = _now()
    await session.flush()
    logger.info("upload_session_cancelled", session_id=str(session_id))
    return upload
