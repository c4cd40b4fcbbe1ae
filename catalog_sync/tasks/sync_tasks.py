"""Catalog sync tasks for arq worker.

This module implements the sync entry points exposed on the worker queue:
- intelligent_sync_task: Run a sync request through the orchestrator
- trigger_full_sync_task / trigger_incremental_sync_task: Scheduler-guarded runs
- request_part_update_task / update_part_now_task: Single-record refreshes
- poll_manual_sync_trigger: Cron task picking up externally requested syncs
- publish_status_task: Cron task publishing the scheduler snapshot to Redis

The orchestrator, scheduler and rate-limit gate are built once in the
worker's on_startup hook and shared through the arq context.
"""
import time
from typing import Any, Dict, Optional

import structlog
from arq.connections import ArqRedis

from catalog_sync.errors.exceptions import CatalogSyncError, SyncInProgressError
from catalog_sync.models.sync_results import ComprehensiveSyncResult, SyncRequest, SyncResult
from catalog_sync.services.orchestrator import SyncOrchestrator
from catalog_sync.services.scheduler import SyncScheduler
from catalog_sync.services.sync_state import (
    clear_sync_trigger,
    get_sync_trigger,
    publish_scheduler_status,
)

logger = structlog.get_logger(__name__)


def _sync_status(result: ComprehensiveSyncResult) -> str:
    if result.overall_success and result.total_failed == 0:
        return "success"
    if result.overall_success:
        return "partial_success"
    return "error"


def _summarize(task_id: str, triggered_by: str, result: ComprehensiveSyncResult) -> Dict[str, Any]:
    return {
        "task_id": task_id,
        "status": _sync_status(result),
        "triggered_by": triggered_by,
        "sync_method": result.sync_method,
        "total_processed": result.total_processed,
        "total_updated": result.total_updated,
        "total_added": result.total_added,
        "total_failed": result.total_failed,
        "duration_ms": result.total_duration_ms,
        "recommendations": result.recommendations,
        "results": {name: r.model_dump(mode="json") for name, r in result.results.items()},
    }


def _single_result(task_id: str, vcpn: str, result: SyncResult) -> Dict[str, Any]:
    return {
        "task_id": task_id,
        "status": "success" if result.success else "error",
        "vcpn": vcpn,
        "sync_status": result.status.value,
        "message": result.message,
        "errors": result.errors,
        "retry_after_seconds": result.retry_after_seconds,
    }


def _error(task_id: str, error: str, **fields: Any) -> Dict[str, Any]:
    return {"task_id": task_id, "status": "error", "error": error, **fields}


async def intelligent_sync_task(
    ctx: Dict[str, Any],
    task_id: str,
    sync_type: str = "all",
    mode: str = "full",
    force_method: Optional[str] = None,
    stale_after_hours: Optional[int] = None,
    triggered_by: str = "manual",
    **kwargs
) -> Dict[str, Any]:
    """Run one sync request through the orchestrator.

    The orchestrator picks the channel per sync type unless
    force_method is given.

    Args:
        ctx: Worker context (contains orchestrator and scheduler)
        task_id: Unique identifier for tracking the sync job
        sync_type: "all", "inventory", "pricing" or "kits"
        mode: "full" or "incremental"
        force_method: Optional "api" or "bulk" override
        stale_after_hours: Incremental staleness threshold override
        triggered_by: What initiated the sync

    Returns:
        Dictionary with task results:
            - task_id: Task identifier
            - status: "success", "partial_success", or "error"
            - results: Per sync type outcome
    """
    log = logger.bind(task_id=task_id, sync_type=sync_type, mode=mode, triggered_by=triggered_by)
    log.info("intelligent_sync_task_started", force_method=force_method)

    orchestrator: Optional[SyncOrchestrator] = ctx.get("orchestrator")
    if orchestrator is None:
        log.error("no_orchestrator_available")
        return _error(task_id, "Orchestrator not initialized", triggered_by=triggered_by)

    options = {
        "sync_type": sync_type,
        "mode": mode,
        "force_method": force_method,
        "stale_after_hours": stale_after_hours,
        "triggered_by": triggered_by,
    }
    scheduler: Optional[SyncScheduler] = ctx.get("scheduler")

    start_time = time.time()
    try:
        if scheduler is not None:
            # Shares the scheduler's single-run guard with timers and triggers
            result = await scheduler.run_request(SyncRequest.model_validate(options))
        else:
            result = await orchestrator.perform_intelligent_sync(options)
    except SyncInProgressError as e:
        log.warning("intelligent_sync_task_skipped", reason=e.message)
        return _error(task_id, e.message, triggered_by=triggered_by)
    except Exception as e:
        log.error(
            "intelligent_sync_task_failed",
            error=str(e),
            error_type=type(e).__name__,
            duration_seconds=round(time.time() - start_time, 2),
        )
        return _error(task_id, str(e), triggered_by=triggered_by)

    summary = _summarize(task_id, triggered_by, result)
    log.info(
        "intelligent_sync_task_completed",
        status=summary["status"],
        sync_method=result.sync_method,
        total_processed=result.total_processed,
        total_failed=result.total_failed,
    )
    return summary


async def trigger_full_sync_task(
    ctx: Dict[str, Any],
    task_id: str,
    triggered_by: str = "manual",
    **kwargs
) -> Dict[str, Any]:
    """Run a full sync of every sync type through the scheduler."""
    return await _run_scheduler_sync(ctx, task_id, "full", triggered_by)


async def trigger_incremental_sync_task(
    ctx: Dict[str, Any],
    task_id: str,
    triggered_by: str = "manual",
    **kwargs
) -> Dict[str, Any]:
    """Run an incremental sync of every sync type through the scheduler."""
    return await _run_scheduler_sync(ctx, task_id, "incremental", triggered_by)


async def _run_scheduler_sync(
    ctx: Dict[str, Any],
    task_id: str,
    mode: str,
    triggered_by: str,
) -> Dict[str, Any]:
    log = logger.bind(task_id=task_id, mode=mode, triggered_by=triggered_by)
    scheduler: Optional[SyncScheduler] = ctx.get("scheduler")
    if scheduler is None:
        log.error("no_scheduler_available")
        return _error(task_id, "Scheduler not initialized", triggered_by=triggered_by)

    log.info("scheduler_sync_task_started")
    try:
        if mode == "full":
            result = await scheduler.trigger_full_sync(triggered_by=triggered_by)
        else:
            result = await scheduler.trigger_incremental_sync(triggered_by=triggered_by)
    except SyncInProgressError as e:
        log.warning("scheduler_sync_task_rejected", error=e.message)
        return _error(task_id, e.message, triggered_by=triggered_by)
    except Exception as e:
        log.error("scheduler_sync_task_failed", error=str(e), error_type=type(e).__name__)
        return _error(task_id, str(e), triggered_by=triggered_by)

    summary = _summarize(task_id, triggered_by, result)
    log.info("scheduler_sync_task_completed", status=summary["status"])
    return summary


async def request_part_update_task(
    ctx: Dict[str, Any],
    task_id: str,
    vcpn: str,
    priority: int = 5,
    requested_by: str = "user",
    **kwargs
) -> Dict[str, Any]:
    """Queue a single-record refresh for the pending-update processor."""
    scheduler: Optional[SyncScheduler] = ctx.get("scheduler")
    if scheduler is None:
        return _error(task_id, "Scheduler not initialized", vcpn=vcpn)

    try:
        request_id = await scheduler.request_part_update(vcpn, priority=priority, requested_by=requested_by)
    except CatalogSyncError as e:
        logger.warning("request_part_update_task_failed", task_id=task_id, vcpn=vcpn, error=e.message)
        return _error(task_id, e.message, vcpn=vcpn)

    logger.info("part_update_requested", task_id=task_id, vcpn=vcpn, priority=priority, request_id=request_id)
    return {"task_id": task_id, "status": "success", "vcpn": vcpn, "request_id": request_id}


async def update_part_now_task(
    ctx: Dict[str, Any],
    task_id: str,
    vcpn: str,
    **kwargs
) -> Dict[str, Any]:
    """Refresh one record immediately through the API channel."""
    scheduler: Optional[SyncScheduler] = ctx.get("scheduler")
    if scheduler is None:
        return _error(task_id, "Scheduler not initialized", vcpn=vcpn)

    try:
        result = await scheduler.update_part_now(vcpn)
    except CatalogSyncError as e:
        logger.error("update_part_now_task_failed", task_id=task_id, vcpn=vcpn, error=e.message)
        return _error(task_id, e.message, vcpn=vcpn)

    logger.info("update_part_now_task_completed", task_id=task_id, vcpn=vcpn, status=result.status.value)
    return _single_result(task_id, vcpn, result)


async def poll_manual_sync_trigger(
    ctx: Dict[str, Any],
    **kwargs
) -> Optional[Dict[str, Any]]:
    """Poll for manual sync trigger requests.

    This task runs every minute to check if a sync has been requested
    via the sync:trigger Redis key.

    Args:
        ctx: Worker context (contains Redis connection)

    Returns:
        Result from intelligent_sync_task if trigger found, else None
    """
    redis: Optional[ArqRedis] = ctx.get("redis")
    if not redis:
        return None

    trigger = await get_sync_trigger(redis)
    if not trigger:
        return None

    task_id = trigger.get("task_id") or f"sync-manual-{int(time.time())}"
    triggered_by = trigger.get("triggered_by") or "manual"

    logger.info(
        "manual_sync_trigger_detected",
        task_id=task_id,
        triggered_by=triggered_by,
        sync_type=trigger.get("sync_type"),
        mode=trigger.get("mode"),
    )

    # Clear before running so a slow sync cannot be picked up twice
    await clear_sync_trigger(redis)

    return await intelligent_sync_task(
        ctx=ctx,
        task_id=task_id,
        sync_type=trigger.get("sync_type") or "all",
        mode=trigger.get("mode") or "full",
        force_method=trigger.get("force_method"),
        triggered_by=triggered_by,
    )


async def publish_status_task(
    ctx: Dict[str, Any],
    **kwargs
) -> None:
    """Publish the scheduler status and rate-limit snapshot to Redis."""
    redis: Optional[ArqRedis] = ctx.get("redis")
    scheduler: Optional[SyncScheduler] = ctx.get("scheduler")
    if not redis or scheduler is None:
        return

    try:
        status = await scheduler.get_status()
    except CatalogSyncError as e:
        logger.error("publish_status_task_failed", error=e.message)
        return
    await publish_scheduler_status(redis, status, scheduler.gate.snapshot())
