"""Sync scheduler: periodic full/incremental syncs and the pending-update queue.

The scheduler owns every timer (asyncio tasks) and the in-progress flag
that keeps full and incremental runs from overlapping. It runs inside
the worker process; running a second worker instance would run a
second scheduler.

Job lifecycle: idle -> running -> idle on success, or idle plus one
scheduled retry on failure (up to ``retry_attempts`` consecutive
retries). Rate-limited outcomes are not retried.
"""
import asyncio
import math
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from catalog_sync.config import SchedulerSettings, scheduler_settings, sync_settings
from catalog_sync.db import operations
from catalog_sync.db.base import async_session_maker
from catalog_sync.errors.exceptions import CatalogSyncError, SyncInProgressError, ValidationError
from catalog_sync.executors.base import SyncExecutor
from catalog_sync.models.enums import SyncLogStatus, SyncMethod, SyncMode, SyncType, SYNC_TYPE_ENDPOINTS
from catalog_sync.models.sync_results import (
    ComprehensiveSyncResult,
    SchedulerStatus,
    SyncRequest,
    SyncResult,
)
from catalog_sync.services.orchestrator import SyncOrchestrator
from catalog_sync.services.rate_limit import RateLimitGate

logger = structlog.get_logger(__name__)

JOB_DAILY = "daily_full_sync"
JOB_INCREMENTAL = "incremental_sync"
JOB_PENDING = "pending_updates"

_DAILY_FIELDS = {"enable_daily_sync", "daily_sync_time"}
_INCREMENTAL_FIELDS = {"enable_incremental_sync", "incremental_sync_interval_hours"}
_PENDING_FIELDS = {"pending_update_interval_seconds"}


def next_daily_run(daily_sync_time: str, now: datetime) -> datetime:
    """Next occurrence of HH:MM after ``now`` (tomorrow if already passed today)."""
    hour, minute = (int(part) for part in daily_sync_time.split(":"))
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class SyncScheduler:
    """Timers, retry policy and queued single-record updates.

    Usage:
        scheduler = SyncScheduler(orchestrator, api_executor, gate)
        await scheduler.initialize()
        ...
        await scheduler.destroy()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        api_executor: SyncExecutor,
        gate: RateLimitGate,
        config: Optional[SchedulerSettings] = None,
        session_factory: Optional[Callable[[], Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            orchestrator: Runs full and incremental syncs
            api_executor: Serves single-record updates
            gate: Shared rate-limit state
            config: Scheduler settings (defaults to environment)
            session_factory: Session factory (defaults to the global one)
            clock: Returns the current aware datetime (injectable for tests)
            sleep: Awaitable sleep used by the timers (injectable for tests)
        """
        self.orchestrator = orchestrator
        self.api_executor = api_executor
        self.gate = gate
        self.config = config or scheduler_settings
        self.session_factory = session_factory or async_session_maker
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

        self._tasks: Dict[str, asyncio.Task] = {}
        self._initialized = False
        self._sync_in_progress = False
        self._current_operation: Optional[str] = None
        self._retry_count = 0
        self._errors: Deque[str] = deque(maxlen=self.config.error_log_size)

        self.last_full_sync: Optional[datetime] = None
        self.last_incremental_sync: Optional[datetime] = None
        self.next_full_sync: Optional[datetime] = None
        self.next_incremental_sync: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    async def initialize(self) -> None:
        """Start the configured timers and catch up on a missed full sync."""
        if self._initialized:
            return
        self._start_timers(_DAILY_FIELDS | _INCREMENTAL_FIELDS | _PENDING_FIELDS)
        await self._persist_schedules()
        self._initialized = True
        logger.info(
            "scheduler_initialized",
            daily=self.config.enable_daily_sync,
            daily_sync_time=self.config.daily_sync_time,
            incremental=self.config.enable_incremental_sync,
            incremental_interval_hours=self.config.incremental_sync_interval_hours,
        )
        await self.check_missed_syncs()

    async def destroy(self) -> None:
        """Cancel every timer and pending retry."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._initialized = False
        logger.info("scheduler_destroyed", cancelled_tasks=len(tasks))

    def _spawn(self, name: str, coro: Awaitable[None]) -> None:
        """Run a coroutine as a named task, replacing any task of the same name."""
        previous = self._tasks.pop(name, None)
        if previous is not None and not previous.done() and previous is not asyncio.current_task():
            previous.cancel()
        task = asyncio.ensure_future(coro)
        self._tasks[name] = task
        task.add_done_callback(lambda t, n=name: self._task_done(n, t))

    def _task_done(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if not task.cancelled() and task.exception() is not None:
            logger.error("scheduler_task_crashed", task=name, error=str(task.exception()))

    def _cancel(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None and not task.done():
            task.cancel()

    def _start_timers(self, changed: set) -> None:
        if changed & _DAILY_FIELDS:
            self._cancel(JOB_DAILY)
            self.next_full_sync = None
            if self.config.enable_daily_sync:
                self._spawn(JOB_DAILY, self._daily_loop())
        if changed & _INCREMENTAL_FIELDS:
            self._cancel(JOB_INCREMENTAL)
            self.next_incremental_sync = None
            if self.config.enable_incremental_sync:
                self._spawn(JOB_INCREMENTAL, self._incremental_loop())
        if changed & _PENDING_FIELDS:
            self._cancel(JOB_PENDING)
            self._spawn(JOB_PENDING, self._pending_loop())

    # -------------------------------------------------------------------------
    # Timers
    # -------------------------------------------------------------------------

    async def _daily_loop(self) -> None:
        while True:
            now = self._clock()
            self.next_full_sync = next_daily_run(self.config.daily_sync_time, now)
            await self._sleep((self.next_full_sync - now).total_seconds())
            await self._scheduled_run(SyncMode.FULL, JOB_DAILY)

    async def _incremental_loop(self) -> None:
        interval = timedelta(hours=self.config.incremental_sync_interval_hours)
        while True:
            self.next_incremental_sync = self._clock() + interval
            await self._sleep(interval.total_seconds())
            await self._scheduled_run(SyncMode.INCREMENTAL, JOB_INCREMENTAL)

    async def _pending_loop(self) -> None:
        while True:
            await self._sleep(self.config.pending_update_interval_seconds)
            try:
                await self.process_pending_updates()
            except CatalogSyncError as e:
                self._record_error(f"Pending update processing failed: {e.message}")

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    async def run_request(self, request: SyncRequest) -> ComprehensiveSyncResult:
        """Run any sync request under the in-progress flag.

        Every full or incremental run in the process goes through here,
        whether it came from a timer, a trigger or a queued task.

        Raises:
            SyncInProgressError: If another run is active
        """
        if self._sync_in_progress:
            raise SyncInProgressError(
                f"Cannot start {request.mode.value} sync: {self._current_operation} is in progress"
            )
        self._sync_in_progress = True
        self._current_operation = f"{request.mode.value}_sync"
        logger.info(
            "guarded_sync_started",
            mode=request.mode.value,
            sync_types=[t.value for t in request.sync_types],
            triggered_by=request.triggered_by,
        )
        try:
            return await self.orchestrator.perform_sync(request)
        finally:
            self._sync_in_progress = False
            self._current_operation = None

    async def _execute(self, mode: SyncMode, triggered_by: str) -> ComprehensiveSyncResult:
        """Run a full or incremental sync of every type."""
        request = SyncRequest(
            sync_type="all",
            mode=mode,
            stale_after_hours=sync_settings.stale_threshold_hours if mode is SyncMode.INCREMENTAL else None,
            triggered_by=triggered_by,
        )
        result = await self.run_request(request)

        if mode is SyncMode.FULL:
            self.last_full_sync = self._clock()
        else:
            self.last_incremental_sync = self._clock()
        return result

    async def _scheduled_run(self, mode: SyncMode, job_name: str, triggered_by: str = "scheduler") -> None:
        """Timer-driven run: skipped while another run is active, retried on failure."""
        try:
            result = await self._execute(mode, triggered_by)
        except SyncInProgressError as e:
            logger.warning("scheduled_sync_skipped", job=job_name, reason=e.message)
            return
        except CatalogSyncError as e:
            self._record_error(f"{mode.value} sync failed: {e.message}")
            self._schedule_retry(mode, job_name)
            await self._record_run(job_name, e.message)
            return

        error = self._after_run(mode, result)
        if error is not None and not self._only_rate_limited(result):
            self._schedule_retry(mode, job_name)
        elif error is not None:
            logger.info("scheduled_sync_rate_limited_no_retry", job=job_name)
        await self._record_run(job_name, error)

    def _after_run(self, mode: SyncMode, result: ComprehensiveSyncResult) -> Optional[str]:
        """Update retry/error state after a run; returns the error summary if it failed."""
        if result.overall_success:
            self._retry_count = 0
            if mode is SyncMode.FULL:
                self._errors.clear()
            return None

        failures = [
            f"{o.sync_type.value}: {o.result.message or '; '.join(o.result.errors) or o.result.status.value}"
            for o in result.outcomes
            if not o.result.success
        ]
        error = f"{mode.value} sync failed ({', '.join(failures)})"
        self._record_error(error)
        return error

    @staticmethod
    def _only_rate_limited(result: ComprehensiveSyncResult) -> bool:
        failed = [o.result for o in result.outcomes if not o.result.success]
        return bool(failed) and all(r.status is SyncLogStatus.RATE_LIMITED for r in failed)

    def _schedule_retry(self, mode: SyncMode, job_name: str) -> None:
        if self._retry_count >= self.config.retry_attempts:
            logger.error("scheduled_sync_retries_exhausted", job=job_name, attempts=self._retry_count)
            self._retry_count = 0
            return
        self._retry_count += 1
        delay = self.config.retry_delay_seconds
        logger.info("scheduled_sync_retry_planned", job=job_name, attempt=self._retry_count, delay_seconds=delay)

        async def retry() -> None:
            await self._sleep(delay)
            await self._scheduled_run(mode, job_name, triggered_by="retry")

        self._spawn(f"{job_name}_retry", retry())

    def _record_error(self, error: str) -> None:
        self._errors.append(f"{self._clock().isoformat()}: {error}")
        logger.warning("scheduler_error_recorded", error=error)

    async def _record_run(self, job_name: str, error: Optional[str]) -> None:
        next_run = self.next_full_sync if job_name == JOB_DAILY else self.next_incremental_sync
        try:
            async with self.session_factory() as session:
                await operations.record_schedule_run(
                    session,
                    job_name,
                    last_run_at=self._clock(),
                    next_run_at=next_run,
                    retry_count=self._retry_count,
                    last_error=error,
                )
                await session.commit()
        except CatalogSyncError as e:
            logger.warning("schedule_run_not_recorded", job=job_name, error=e.message)

    async def _persist_schedules(self) -> None:
        hour, minute = self.config.daily_sync_time.split(":")
        jobs = [
            (JOB_DAILY, f"{int(minute)} {int(hour)} * * *", self.config.enable_daily_sync, self.next_full_sync),
            (
                JOB_INCREMENTAL,
                f"every {self.config.incremental_sync_interval_hours}h",
                self.config.enable_incremental_sync,
                self.next_incremental_sync,
            ),
            (JOB_PENDING, f"every {self.config.pending_update_interval_seconds}s", True, None),
        ]
        try:
            async with self.session_factory() as session:
                for job_name, schedule, enabled, next_run in jobs:
                    await operations.save_schedule(
                        session, job_name, schedule, enabled, next_run_at=next_run
                    )
                await session.commit()
        except CatalogSyncError as e:
            logger.warning("schedules_not_persisted", error=e.message)

    async def check_missed_syncs(self) -> bool:
        """Start an immediate full sync if none completed within the ceiling.

        Returns:
            True if a catch-up sync was started
        """
        async with self.session_factory() as session:
            last = await operations.get_last_completed_sync(session, mode=SyncMode.FULL)

        ceiling = timedelta(hours=self.config.missed_sync_ceiling_hours)
        finished = (last.completed_at or last.started_at) if last is not None else None
        if finished is not None and self._clock() - finished <= ceiling:
            return False

        logger.warning(
            "missed_full_sync_detected",
            last_full_sync=finished.isoformat() if finished else None,
            ceiling_hours=self.config.missed_sync_ceiling_hours,
        )
        self._spawn("missed_full_sync", self._scheduled_run(SyncMode.FULL, JOB_DAILY, triggered_by="missed_sync"))
        return True

    # -------------------------------------------------------------------------
    # Manual triggers
    # -------------------------------------------------------------------------

    async def trigger_full_sync(self, triggered_by: str = "manual") -> ComprehensiveSyncResult:
        """Run a full sync now.

        Raises:
            SyncInProgressError: If a full or incremental sync is running
        """
        result = await self._execute(SyncMode.FULL, triggered_by)
        self._after_run(SyncMode.FULL, result)
        return result

    async def trigger_incremental_sync(self, triggered_by: str = "manual") -> ComprehensiveSyncResult:
        """Run an incremental sync now.

        Raises:
            SyncInProgressError: If a full or incremental sync is running
        """
        result = await self._execute(SyncMode.INCREMENTAL, triggered_by)
        self._after_run(SyncMode.INCREMENTAL, result)
        return result

    # -------------------------------------------------------------------------
    # Single-record updates
    # -------------------------------------------------------------------------

    async def request_part_update(
        self,
        vcpn: str,
        priority: int = 5,
        requested_by: str = "user",
    ) -> str:
        """Queue a single-record refresh for the pending-update processor.

        Returns:
            Id of the queued request

        Raises:
            ValidationError: If vcpn is empty or priority is outside 1-10
        """
        vcpn = (vcpn or "").strip()
        if not vcpn:
            raise ValidationError("vcpn is required")
        if not 1 <= priority <= 10:
            raise ValidationError(f"priority must be between 1 and 10, got {priority}")

        async with self.session_factory() as session:
            request = await operations.create_update_request(session, vcpn, priority, requested_by)
            await session.commit()
        return str(request.id)

    async def update_part_now(self, vcpn: str) -> SyncResult:
        """Refresh one record immediately through the API channel."""
        endpoint = SYNC_TYPE_ENDPOINTS[SyncType.INVENTORY]
        if self.gate.is_limited(endpoint):
            remaining = self.gate.remaining_cooldown(endpoint)
            message = f"Rate limited. Retry in {math.ceil(remaining / 60)} minutes."
            return SyncResult(
                success=False,
                status=SyncLogStatus.RATE_LIMITED,
                sync_type=SyncType.INVENTORY,
                method=SyncMethod.API,
                mode=SyncMode.SINGLE,
                errors=[message],
                retry_after_seconds=remaining,
                message=message,
            )
        return await self.api_executor.sync_one(vcpn, triggered_by="manual")

    async def process_pending_updates(self) -> int:
        """Drain up to ``max_concurrent_updates`` queued requests.

        Skipped while a full or incremental sync runs, and while the
        inventory endpoint is rate limited.

        Returns:
            Number of requests processed
        """
        if self._sync_in_progress:
            logger.debug("pending_updates_skipped", reason="sync_in_progress")
            return 0
        if self.gate.is_limited(SYNC_TYPE_ENDPOINTS[SyncType.INVENTORY]):
            logger.debug("pending_updates_skipped", reason="rate_limited")
            return 0

        async with self.session_factory() as session:
            requests = await operations.claim_pending_requests(session, self.config.max_concurrent_updates)
            await session.commit()
        if not requests:
            return 0

        async def process(request) -> None:
            try:
                result = await self.api_executor.sync_one(request.vcpn, triggered_by="pending_update")
                success, error = result.success, result.message or "; ".join(result.errors) or None
            except CatalogSyncError as e:
                success, error = False, e.message
            async with self.session_factory() as session:
                await operations.complete_update_request(session, request.id, success, error)
                await session.commit()

        await asyncio.gather(*(process(request) for request in requests))
        logger.info("pending_updates_processed", count=len(requests))
        return len(requests)

    # -------------------------------------------------------------------------
    # Configuration and status
    # -------------------------------------------------------------------------

    def get_config(self) -> Dict[str, Any]:
        return self.config.model_dump()

    async def update_config(self, **changes: Any) -> Dict[str, Any]:
        """Validate and apply setting changes, restarting only affected timers.

        Raises:
            ValidationError: If a key is unknown or a value is invalid
        """
        unknown = set(changes) - set(SchedulerSettings.model_fields)
        if unknown:
            raise ValidationError(f"Unknown scheduler settings: {', '.join(sorted(unknown))}")
        try:
            new_config = SchedulerSettings(**{**self.config.model_dump(), **changes})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid scheduler settings: {e}") from e

        changed = {key for key in changes if getattr(self.config, key) != getattr(new_config, key)}
        self.config = new_config
        if "error_log_size" in changed:
            self._errors = deque(self._errors, maxlen=new_config.error_log_size)
        if self._initialized and changed:
            self._start_timers(changed)
            await self._persist_schedules()

        logger.info("scheduler_config_updated", changed=sorted(changed))
        return self.get_config()

    async def get_status(self) -> SchedulerStatus:
        async with self.session_factory() as session:
            pending = await operations.count_pending_requests(session)
        return SchedulerStatus(
            initialized=self._initialized,
            sync_in_progress=self._sync_in_progress,
            current_operation=self._current_operation,
            last_full_sync=self.last_full_sync,
            last_incremental_sync=self.last_incremental_sync,
            next_full_sync=self.next_full_sync,
            next_incremental_sync=self.next_incremental_sync,
            retry_count=self._retry_count,
            pending_updates=pending,
            errors=list(self._errors),
        )

    async def get_sync_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent sync log entries across all sync types."""
        async with self.session_factory() as session:
            logs = await operations.get_recent_sync_logs(session, limit=limit)
        return [
            {
                "id": str(entry.id),
                "sync_type": entry.sync_type.value,
                "channel": entry.channel.value,
                "mode": entry.mode.value,
                "status": entry.status.value,
                "triggered_by": entry.triggered_by,
                "started_at": entry.started_at.isoformat() if entry.started_at else None,
                "completed_at": entry.completed_at.isoformat() if entry.completed_at else None,
                "duration_ms": entry.duration_ms,
                "records_processed": entry.records_processed,
                "records_updated": entry.records_updated,
                "records_added": entry.records_added,
                "records_failed": entry.records_failed,
                "error_message": entry.error_message,
            }
            for entry in logs
        ]
