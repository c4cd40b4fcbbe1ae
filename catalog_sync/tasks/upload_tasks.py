"""Bulk file upload tasks for arq worker.

Uploaded files are written to disk by the caller; the task reads the
file, runs the validate/stage/reconcile pipeline and reports the
resulting upload session.
"""
import os
import uuid
from typing import Any, Dict, Optional

import structlog

from catalog_sync.db.base import async_session_maker
from catalog_sync.errors.exceptions import CatalogSyncError, MalformedInputError
from catalog_sync.services.staging import reconcile_record, reconcile_session, upload_bulk_file

logger = structlog.get_logger(__name__)


async def process_bulk_upload_task(
    ctx: Dict[str, Any],
    task_id: str,
    file_path: str,
    filename: Optional[str] = None,
    uploaded_by: Optional[str] = None,
    auto_sync: bool = True,
    **kwargs
) -> Dict[str, Any]:
    """Validate, stage and reconcile a bulk catalog file.

    Args:
        ctx: Worker context
        task_id: Unique identifier for tracking the upload
        file_path: Path of the uploaded CSV file
        filename: Original file name (defaults to the path's basename)
        uploaded_by: Operator identifier
        auto_sync: Commit clean rows and soft-delete rows absent from the file

    Returns:
        Dictionary with task results:
            - task_id: Task identifier
            - status: "success", "partial_success", or "error"
            - session_id: Upload session id
            - summary: Validation counts
            - reconciliation: Reconciliation counts (None without auto_sync)
    """
    filename = filename or os.path.basename(file_path)
    log = logger.bind(task_id=task_id, filename=filename, uploaded_by=uploaded_by)
    log.info("process_bulk_upload_task_started", auto_sync=auto_sync)

    try:
        with open(file_path, "rb") as f:
            content = f.read()
    except OSError as e:
        log.error("bulk_upload_file_unreadable", file_path=file_path, error=str(e))
        return {"task_id": task_id, "status": "error", "error": f"Cannot read {file_path}: {e}"}

    try:
        result = await upload_bulk_file(
            content,
            filename,
            uploaded_by=uploaded_by,
            auto_sync=auto_sync,
            session_factory=ctx.get("session_factory"),
        )
    except MalformedInputError as e:
        log.warning("bulk_upload_rejected", error=e.message, missing_columns=e.missing_columns)
        return {
            "task_id": task_id,
            "status": "error",
            "error": e.message,
            "missing_columns": e.missing_columns,
        }
    except CatalogSyncError as e:
        log.error("process_bulk_upload_task_failed", error=e.message, error_type=type(e).__name__)
        return {"task_id": task_id, "status": "error", "error": e.message}

    reconciliation = result.reconciliation
    has_problems = result.summary.invalid > 0 or bool(reconciliation and reconciliation.errors)
    status = "partial_success" if has_problems else "success"

    log.info(
        "process_bulk_upload_task_completed",
        status=status,
        session_id=str(result.session_id),
        total=result.summary.total,
        valid=result.summary.valid,
        invalid=result.summary.invalid,
    )
    return {
        "task_id": task_id,
        "status": status,
        "session_id": str(result.session_id),
        "summary": result.summary.model_dump(),
        "reconciliation": reconciliation.model_dump() if reconciliation else None,
    }


async def reconcile_upload_session_task(
    ctx: Dict[str, Any],
    task_id: str,
    session_id: str,
    **kwargs
) -> Dict[str, Any]:
    """Commit the remaining valid staging rows of an upload session after review."""
    session_factory = ctx.get("session_factory") or async_session_maker
    log = logger.bind(task_id=task_id, session_id=session_id)

    try:
        async with session_factory() as session:
            summary = await reconcile_session(session, uuid.UUID(session_id))
            await session.commit()
    except ValueError:
        return {"task_id": task_id, "status": "error", "error": f"Invalid session id: {session_id}"}
    except CatalogSyncError as e:
        log.error("reconcile_upload_session_task_failed", error=e.message)
        return {"task_id": task_id, "status": "error", "error": e.message}

    log.info("reconcile_upload_session_task_completed", **summary.model_dump(exclude={"errors"}))
    return {
        "task_id": task_id,
        "status": "partial_success" if summary.errors else "success",
        "reconciliation": summary.model_dump(),
    }


async def reconcile_staging_record_task(
    ctx: Dict[str, Any],
    task_id: str,
    record_id: str,
    **kwargs
) -> Dict[str, Any]:
    """Commit one reviewed staging record into the catalog."""
    session_factory = ctx.get("session_factory") or async_session_maker
    log = logger.bind(task_id=task_id, record_id=record_id)

    try:
        async with session_factory() as session:
            action = await reconcile_record(session, uuid.UUID(record_id))
            await session.commit()
    except ValueError:
        return {"task_id": task_id, "status": "error", "error": f"Invalid record id: {record_id}"}
    except CatalogSyncError as e:
        log.warning("reconcile_staging_record_task_failed", error=e.message)
        return {"task_id": task_id, "status": "error", "error": e.message}

    log.info("reconcile_staging_record_task_completed", action=action.value)
    return {"task_id": task_id, "status": "success", "record_id": record_id, "action": action.value}
