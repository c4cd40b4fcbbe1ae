"""Shared sync state in Redis.

This module provides helper functions for the state the worker shares
with external readers:
- Manual sync trigger requests (set by an external API, polled by the worker)
- Published scheduler status snapshot
"""
import json
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from catalog_sync.models.sync_results import SchedulerStatus

logger = structlog.get_logger(__name__)

# Redis key constants
SYNC_TRIGGER_KEY = "sync:trigger"
SYNC_STATUS_KEY = "sync:status"

# Stale triggers expire after 5 minutes
SYNC_TRIGGER_TTL_SECONDS = 300


# =============================================================================
# Manual Sync Trigger
# =============================================================================


async def set_sync_trigger(
    redis: Redis,
    task_id: str,
    triggered_by: str = "manual",
    sync_type: str = "all",
    mode: str = "full",
    force_method: Optional[str] = None,
) -> bool:
    """Set a sync trigger request in Redis.

    Called by an external API to request a sync. The worker polls this
    key once a minute and runs the requested sync when set.

    Args:
        redis: Redis connection
        task_id: Unique task identifier
        triggered_by: What initiated the sync
        sync_type: "all", "inventory", "pricing" or "kits"
        mode: "full" or "incremental"
        force_method: Optional "api" or "bulk" override

    Returns:
        True if trigger was set, False if one is already pending
    """
    log = logger.bind(task_id=task_id, triggered_by=triggered_by)

    try:
        trigger_data = {
            "task_id": task_id,
            "triggered_by": triggered_by,
            "sync_type": sync_type,
            "mode": mode,
            "force_method": force_method,
            "triggered_at": datetime.now(timezone.utc).isoformat(),
        }

        # NX: never overwrite a pending trigger
        result = await redis.set(
            SYNC_TRIGGER_KEY,
            json.dumps(trigger_data),
            nx=True,
            ex=SYNC_TRIGGER_TTL_SECONDS,
        )

        if result:
            log.info("sync_trigger_set", sync_type=sync_type, mode=mode)
            return True
        log.warning("sync_trigger_already_pending")
        return False

    except RedisError as e:
        log.error("set_sync_trigger_failed", error=str(e))
        raise


async def get_sync_trigger(redis: Redis) -> Optional[Dict[str, Any]]:
    """Get the pending sync trigger, or None."""
    try:
        trigger_json = await redis.get(SYNC_TRIGGER_KEY)
        if trigger_json:
            if isinstance(trigger_json, bytes):
                trigger_json = trigger_json.decode()
            return json.loads(trigger_json)
        return None

    except (json.JSONDecodeError, RedisError) as e:
        logger.error("get_sync_trigger_failed", error=str(e))
        return None


async def clear_sync_trigger(redis: Redis) -> bool:
    """Clear the sync trigger after processing."""
    try:
        await redis.delete(SYNC_TRIGGER_KEY)
        logger.debug("sync_trigger_cleared")
        return True
    except RedisError as e:
        logger.error("clear_sync_trigger_failed", error=str(e))
        return False


# =============================================================================
# Published status
# =============================================================================


async def publish_scheduler_status(
    redis: Redis,
    status: SchedulerStatus,
    rate_limits: Optional[Dict[str, Any]] = None,
) -> bool:
    """Store a JSON snapshot of the scheduler for external readers.

    Args:
        redis: Redis connection
        status: Current scheduler status
        rate_limits: Rate-limit gate snapshot

    Returns:
        True if the snapshot was written
    """
    try:
        snapshot = {
            **status.model_dump(mode="json"),
            "rate_limits": rate_limits or {},
            "published_at": datetime.now(timezone.utc).isoformat(),
        }
        await redis.set(SYNC_STATUS_KEY, json.dumps(snapshot))
        logger.debug("scheduler_status_published", sync_in_progress=status.sync_in_progress)
        return True
    except RedisError as e:
        logger.error("publish_scheduler_status_failed", error=str(e))
        return False


async def get_published_status(redis: Redis) -> Optional[Dict[str, Any]]:
    """Read the last published scheduler snapshot, or None."""
    try:
        raw = await redis.get(SYNC_STATUS_KEY)
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return json.loads(raw)
    except (json.JSONDecodeError, RedisError) as e:
        logger.error("get_published_status_failed", error=str(e))
        return None
