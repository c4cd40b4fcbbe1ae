"""Sync orchestrator: decide a channel per sync type and run it.

For each requested sync type the orchestrator asks the decision engine
for a channel, delegates to that channel's executor and aggregates the
results. Multi-type runs fan out concurrently; one type failing never
aborts the others.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import structlog

from catalog_sync.config import sync_settings
from catalog_sync.db import operations
from catalog_sync.db.base import async_session_maker
from catalog_sync.executors.base import SyncExecutor
from catalog_sync.models.enums import SyncLogStatus, SyncMethod, SyncMode, SyncType, SYNC_TYPE_ENDPOINTS
from catalog_sync.models.sync_results import (
    ComprehensiveSyncResult,
    SyncConditions,
    SyncDecision,
    SyncRequest,
    SyncResult,
    TypeSyncOutcome,
)
from catalog_sync.services.decision import analyze_conditions, decide
from catalog_sync.services.rate_limit import RateLimitGate

logger = structlog.get_logger(__name__)

SLOW_SYNC_MS = 5 * 60 * 1000


def _mentions(texts: List[str], *needles: str) -> bool:
    lowered = " ".join(texts).lower()
    return any(needle in lowered for needle in needles)


def generate_recommendations(results: List[SyncResult], duration_ms: int) -> List[str]:
    """Operator hints derived from a finished run."""
    recommendations: List[str] = []
    errors = [error for result in results for error in result.errors]

    failed = sum(1 for result in results if not result.success)
    if failed:
        recommendations.append(
            f"{failed} sync type(s) failed. Consider using the bulk channel for more reliable synchronization."
        )

    if any(result.success and result.method is SyncMethod.BULK for result in results):
        recommendations.append(
            "Bulk channel sync completed successfully. Monitor API rate limits before switching back to the API channel."
        )

    if duration_ms > SLOW_SYNC_MS:
        recommendations.append("Sync took over 5 minutes. Consider scheduling during off-peak hours.")

    if _mentions(errors, "rate limit", "429"):
        recommendations.append("Rate limiting detected. Bulk channel sync recommended for the next 24 hours.")

    if _mentions(errors, "timeout", "network"):
        recommendations.append("Network issues detected. Consider smaller batch sizes or retry later.")

    if _mentions(errors, "database", "constraint"):
        recommendations.append("Database errors detected. Check catalog schema and data integrity.")

    return recommendations


class SyncOrchestrator:
    """Runs sync requests across the API and bulk executors.

    Usage:
        orchestrator = SyncOrchestrator(executors, gate)
        result = await orchestrator.perform_sync(SyncRequest(sync_type="all"))
    """

    def __init__(
        self,
        executors: Mapping[SyncMethod, SyncExecutor],
        gate: RateLimitGate,
        session_factory: Optional[Callable[[], Any]] = None,
        rate_limit_cooldown_hours: Optional[int] = None,
    ):
        self.executors = dict(executors)
        self.gate = gate
        self.session_factory = session_factory or async_session_maker
        self.rate_limit_cooldown_hours = (
            rate_limit_cooldown_hours or sync_settings.rate_limit_cooldown_hours
        )

    async def _conditions(self, sync_type: SyncType) -> SyncConditions:
        async with self.session_factory() as session:
            return await analyze_conditions(session, sync_type, self.gate)

    async def plan(self, sync_type: SyncType, force_method: Optional[SyncMethod] = None) -> SyncDecision:
        """Decide the channel for one sync type."""
        if force_method is not None:
            return decide(sync_type, SyncConditions(), force_method=force_method)
        return decide(sync_type, await self._conditions(sync_type))

    def _failed_result(
        self,
        sync_type: SyncType,
        method: SyncMethod,
        mode: SyncMode,
        error: str,
    ) -> SyncResult:
        return SyncResult(
            success=False,
            status=SyncLogStatus.FAILED,
            sync_type=sync_type,
            method=method,
            mode=mode,
            errors=[error],
            message=error,
        )

    async def _sync_type(self, sync_type: SyncType, request: SyncRequest) -> TypeSyncOutcome:
        log = logger.bind(sync_type=sync_type.value, mode=request.mode.value)
        endpoint = SYNC_TYPE_ENDPOINTS[sync_type]
        # A cooldown already in force is not extended by runs it turned away
        was_limited = self.gate.is_limited(endpoint)
        decision = SyncDecision(method=SyncMethod.BULK, reason="Decision unavailable", confidence=0.0)
        try:
            decision = await self.plan(sync_type, request.force_method)
            log.info(
                "sync_method_decided",
                method=decision.method.value,
                reason=decision.reason,
                confidence=decision.confidence,
                score=decision.score,
            )

            executor = self.executors.get(decision.method)
            if executor is None:
                raise LookupError(f"No executor registered for {decision.method.value}")

            if request.mode is SyncMode.INCREMENTAL:
                result = await executor.sync_incremental(
                    sync_type,
                    stale_after_hours=request.stale_after_hours,
                    triggered_by=request.triggered_by,
                )
            else:
                result = await executor.sync_full(sync_type, triggered_by=request.triggered_by)
        except Exception as e:
            log.error("sync_type_failed", error=str(e), error_type=type(e).__name__)
            result = self._failed_result(sync_type, decision.method, request.mode, f"{type(e).__name__}: {e}")

        if not was_limited and _mentions(result.errors, "rate limit", "429"):
            self.gate.mark_limited(
                endpoint,
                self.rate_limit_cooldown_hours * 3600,
                reason=f"{sync_type.value} sync hit the supplier rate limit",
            )

        log.info(
            "sync_type_completed",
            method=result.method.value,
            status=result.status.value,
            processed=result.processed,
            updated=result.updated,
            added=result.added,
            failed=result.failed,
            duration_ms=result.duration_ms,
        )
        return TypeSyncOutcome(sync_type=sync_type, decision=decision, result=result)

    async def perform_sync(self, request: SyncRequest) -> ComprehensiveSyncResult:
        """Run a sync request for one sync type or all of them.

        Args:
            request: What to sync and how

        Returns:
            ComprehensiveSyncResult with per-type outcomes and aggregates
        """
        started_at = datetime.now(timezone.utc)
        sync_types = request.sync_types
        logger.info(
            "sync_started",
            sync_types=[t.value for t in sync_types],
            mode=request.mode.value,
            force_method=request.force_method.value if request.force_method else None,
            triggered_by=request.triggered_by,
        )

        if len(sync_types) == 1:
            outcomes = [await self._sync_type(sync_types[0], request)]
        else:
            outcomes = list(await asyncio.gather(
                *(self._sync_type(sync_type, request) for sync_type in sync_types)
            ))

        completed_at = datetime.now(timezone.utc)
        results = [outcome.result for outcome in outcomes]
        duration_ms = int((completed_at - started_at).total_seconds() * 1000)
        successes = sum(1 for result in results if result.success)

        aggregate = ComprehensiveSyncResult(
            sync_method="hybrid" if len(outcomes) > 1 else outcomes[0].decision.method.value,
            outcomes=outcomes,
            overall_success=successes >= 1 and successes * 2 >= len(results),
            total_processed=sum(r.processed for r in results),
            total_updated=sum(r.updated for r in results),
            total_added=sum(r.added for r in results),
            total_failed=sum(r.failed for r in results),
            total_duration_ms=duration_ms,
            recommendations=generate_recommendations(results, duration_ms),
            started_at=started_at,
            completed_at=completed_at,
        )

        logger.info(
            "sync_completed",
            sync_method=aggregate.sync_method,
            overall_success=aggregate.overall_success,
            total_processed=aggregate.total_processed,
            total_failed=aggregate.total_failed,
            duration_ms=duration_ms,
        )
        return aggregate

    async def perform_intelligent_sync(
        self,
        options: Optional[Union[SyncRequest, Dict[str, Any]]] = None,
    ) -> ComprehensiveSyncResult:
        """Caller-facing entry point; accepts a SyncRequest or its dict form."""
        if options is None:
            request = SyncRequest()
        elif isinstance(options, SyncRequest):
            request = options
        else:
            request = SyncRequest.model_validate(options)
        return await self.perform_sync(request)

    async def get_sync_status(self) -> Dict[str, Any]:
        """Last sync log and current decision inputs for every sync type."""
        status: Dict[str, Any] = {"types": {}, "rate_limits": self.gate.snapshot()}
        async with self.session_factory() as session:
            for sync_type in SyncType:
                recent = await operations.get_recent_sync_logs(session, sync_type=sync_type, limit=1)
                conditions = await analyze_conditions(session, sync_type, self.gate)
                decision = decide(sync_type, conditions)
                last = recent[0] if recent else None
                status["types"][sync_type.value] = {
                    "last_sync": {
                        "id": str(last.id),
                        "channel": last.channel.value,
                        "mode": last.mode.value,
                        "status": last.status.value,
                        "started_at": last.started_at.isoformat() if last.started_at else None,
                        "completed_at": last.completed_at.isoformat() if last.completed_at else None,
                        "records_processed": last.records_processed,
                        "records_failed": last.records_failed,
                        "error_message": last.error_message,
                    } if last else None,
                    "conditions": conditions.model_dump(),
                    "recommended_method": decision.method.value,
                    "reason": decision.reason,
                }
        return status

    def get_rate_limit_status(self) -> Dict[str, Any]:
        """Current rate-limit cooldowns keyed by endpoint."""
        snapshot = self.gate.snapshot()
        return {"is_rate_limited": bool(snapshot), "endpoints": snapshot}
