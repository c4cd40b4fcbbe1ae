"""arq worker configuration for catalog synchronization.

This module configures the arq worker with:
    - intelligent_sync_task: Orchestrated sync with per-type channel selection
    - trigger_full_sync_task / trigger_incremental_sync_task: Scheduler-guarded runs
    - request_part_update_task / update_part_now_task: Single-record refreshes
    - process_bulk_upload_task: Bulk file validation, staging and reconciliation
    - reconcile_upload_session_task / reconcile_staging_record_task: Post-review commits

The worker also hosts the in-process scheduler (daily full sync,
incremental sync and pending-update timers). Run exactly one worker
instance per deployment so the timers fire once.
"""
from arq.connections import RedisSettings, ArqRedis
from arq import cron
from typing import Dict, Any
import structlog
from catalog_sync.config import settings, configure_logging
from catalog_sync.clients import BulkFeedClient, SupplierApiClient
from catalog_sync.db.base import async_session_maker
from catalog_sync.executors import (
    ApiSyncExecutor,
    BulkSyncExecutor,
    clear_executors,
    register_executor,
    registered_executors,
)
from catalog_sync.models.enums import SyncMethod
from catalog_sync.services.orchestrator import SyncOrchestrator
from catalog_sync.services.rate_limit import RateLimitGate
from catalog_sync.services.scheduler import SyncScheduler
from catalog_sync.tasks.sync_tasks import (
    intelligent_sync_task,
    trigger_full_sync_task,
    trigger_incremental_sync_task,
    request_part_update_task,
    update_part_now_task,
    poll_manual_sync_trigger,
    publish_status_task,
)
from catalog_sync.tasks.upload_tasks import (
    process_bulk_upload_task,
    reconcile_upload_session_task,
    reconcile_staging_record_task,
)

# Configure logging
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


async def on_startup(ctx: Dict[str, Any]) -> None:
    """Build the shared sync components and start the scheduler.

    Populates ctx with gate, clients, orchestrator and scheduler so
    tasks can reach them.
    """
    gate = RateLimitGate()
    api_client = SupplierApiClient(gate)
    bulk_client = BulkFeedClient()
    await api_client.open()
    await bulk_client.open()

    api_executor = ApiSyncExecutor(api_client, gate, session_factory=async_session_maker)
    bulk_executor = BulkSyncExecutor(bulk_client, session_factory=async_session_maker)
    register_executor(SyncMethod.API, api_executor, replace=True)
    register_executor(SyncMethod.BULK, bulk_executor, replace=True)

    orchestrator = SyncOrchestrator(registered_executors(), gate, session_factory=async_session_maker)
    scheduler = SyncScheduler(orchestrator, api_executor, gate, session_factory=async_session_maker)

    ctx.update({
        "gate": gate,
        "api_client": api_client,
        "bulk_client": bulk_client,
        "session_factory": async_session_maker,
        "orchestrator": orchestrator,
        "scheduler": scheduler,
    })

    await scheduler.initialize()
    logger.info("worker_started", queue_name=settings.queue_name, environment=settings.environment)


async def on_shutdown(ctx: Dict[str, Any]) -> None:
    """Stop the scheduler timers and close the supplier clients."""
    scheduler = ctx.get("scheduler")
    if scheduler is not None:
        await scheduler.destroy()

    for key in ("api_client", "bulk_client"):
        client = ctx.get(key)
        if client is not None:
            await client.close()

    clear_executors()
    logger.info("worker_stopped")


DLQ_RETENTION_SECONDS = 86400 * 7


def _dlq_key() -> str:
    return f"arq:dlq:{settings.dlq_name}"


async def monitor_queue_depth(ctx: Dict[str, Any]) -> None:
    """Log pending job and dead-letter counts (cron, every 5 minutes)."""
    redis: ArqRedis = ctx.get("redis")
    if not redis:
        logger.warning("monitor_queue_depth_no_redis")
        return

    try:
        queue_depth = await redis.llen(f"arq:queue:{settings.queue_name}")
        dlq_depth = await redis.scard(_dlq_key())
    except Exception as e:
        logger.error("monitor_queue_depth_error", error=str(e))
        return

    log = logger.warning if dlq_depth else logger.info
    log(
        "queue_depth_monitor",
        queue_name=settings.queue_name,
        queue_depth=queue_depth,
        dlq_name=settings.dlq_name,
        dlq_depth=dlq_depth,
    )


async def on_job_end(ctx: Dict[str, Any]) -> None:
    """Record jobs that failed on their last allowed try in the DLQ set.

    arq counts the first attempt in ``max_tries``, so a job is dead once
    ``job_try`` passes it. Sync tasks report domain failures as result
    dicts; only raised exceptions end up here.
    """
    job_id = ctx.get("job_id", "unknown")
    job_try = ctx.get("job_try", 1)
    job_result = ctx.get("job_result")

    if not isinstance(job_result, Exception) or job_try <= WorkerSettings.max_tries:
        logger.debug("on_job_end_skipped", job_id=job_id, job_try=job_try)
        return

    redis: ArqRedis = ctx.get("redis")
    if not redis:
        return

    logger.warning(
        "job_moved_to_dlq",
        job_id=job_id,
        job_try=job_try,
        dlq_name=settings.dlq_name,
        error=str(job_result),
    )
    try:
        await redis.sadd(_dlq_key(), job_id)
        await redis.expire(_dlq_key(), DLQ_RETENTION_SECONDS)
    except Exception as e:
        logger.error("on_job_end_error", job_id=job_id, error=str(e))


class WorkerSettings:
    """arq worker configuration settings.

    This class is imported by arq CLI: `arq catalog_sync.worker.WorkerSettings`

    Registered Tasks:
        - intelligent_sync_task: Orchestrated sync request
        - trigger_full_sync_task: Full sync of every type
        - trigger_incremental_sync_task: Incremental sync of every type
        - request_part_update_task: Queue a single-record refresh
        - update_part_now_task: Immediate single-record refresh
        - process_bulk_upload_task: Bulk file pipeline
        - reconcile_upload_session_task: Commit reviewed upload rows
        - reconcile_staging_record_task: Commit one reviewed row

    Cron Jobs:
        - monitor_queue_depth: Every 5 minutes
        - poll_manual_sync_trigger: Every minute
        - publish_status_task: Every minute
    """

    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.queue_name
    max_jobs = settings.max_workers
    job_timeout = settings.job_timeout
    keep_result = 3600  # Keep results for 1 hour
    max_tries = 3  # Maximum retry attempts

    functions = [
        intelligent_sync_task,
        trigger_full_sync_task,
        trigger_incremental_sync_task,
        request_part_update_task,
        update_part_now_task,
        process_bulk_upload_task,
        reconcile_upload_session_task,
        reconcile_staging_record_task,
    ]

    on_startup = on_startup
    on_shutdown = on_shutdown
    on_job_end = on_job_end

    cron_jobs = [
        # Queue monitoring: every 5 minutes
        cron(monitor_queue_depth, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}),
        # External callers set sync:trigger, worker polls and executes
        cron(
            poll_manual_sync_trigger,
            minute=set(range(0, 60)),  # Every minute
            unique=True,
        ),
        cron(
            publish_status_task,
            minute=set(range(0, 60)),
            second=30,
            unique=True,
        ),
    ]
