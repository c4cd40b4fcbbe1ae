"""Channel selection: API or bulk feed, per sync type.

``decide`` is a pure scoring function over SyncConditions. Positive
factors favour the bulk feed, negative ones the API; the sign of the
total picks the channel. ``analyze_conditions`` gathers the inputs
from the sync log, the catalog store and the rate-limit gate.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.db import operations
from catalog_sync.models.enums import SyncMethod, SyncType, SYNC_TYPE_ENDPOINTS
from catalog_sync.models.sync_results import SyncConditions, SyncDecision
from catalog_sync.services.rate_limit import RateLimitGate

logger = structlog.get_logger(__name__)

LARGE_DATASET = 5000
MEDIUM_DATASET = 1000
SMALL_DATASET = 100
FULL_REFRESH_AGE_HOURS = 24
RECENT_SYNC_HOURS = 2
RECENT_PRICING_HOURS = 6
HIGH_ERROR_COUNT = 5
NO_SYNC_AGE_HOURS = 999.0

RATE_LIMIT_LOOKBACK = timedelta(hours=1)
RATE_LIMIT_LOOKBACK_LOGS = 5
ERROR_LOOKBACK = timedelta(hours=24)


def score_conditions(sync_type: SyncType, conditions: SyncConditions) -> Tuple[int, List[str]]:
    """Signed score and the reasons that contributed to it."""
    score = 0
    reasons: List[str] = []
    limited = conditions.is_rate_limited
    count = conditions.item_count_estimate
    age = conditions.last_sync_age_hours

    if limited:
        score += 50
        reasons.append("API rate limited")

    if count > LARGE_DATASET:
        score += 30
        reasons.append(f"Large dataset ({count} items)")
    elif count > MEDIUM_DATASET:
        score += 15
        reasons.append(f"Medium dataset ({count} items)")

    if conditions.is_full_refresh_due:
        score += 20
        reasons.append("Full refresh needed")

    if conditions.recent_api_error_count > HIGH_ERROR_COUNT:
        score += 25
        reasons.append(f"High API error rate ({conditions.recent_api_error_count} errors)")

    if count < SMALL_DATASET and not limited:
        score -= 30
        reasons.append("Small dataset, API efficient")

    if age < RECENT_SYNC_HOURS and not limited:
        score -= 20
        reasons.append("Recent sync, API for incremental")

    if sync_type is SyncType.KITS and not limited and count < MEDIUM_DATASET:
        score -= 25
        reasons.append("Kit data is API-friendly")

    if sync_type is SyncType.PRICING and not limited and age < RECENT_PRICING_HOURS:
        score -= 15
        reasons.append("Recent pricing sync, API for updates")

    return score, reasons


def decide(
    sync_type: SyncType,
    conditions: SyncConditions,
    force_method: Optional[SyncMethod] = None,
) -> SyncDecision:
    """Pick the channel for one sync type.

    Args:
        sync_type: Dataset to sync
        conditions: Current decision inputs
        force_method: Operator override; skips scoring

    Returns:
        SyncDecision with method, reason, confidence and score
    """
    if force_method is not None:
        return SyncDecision(
            method=force_method,
            reason=f"Forced {force_method.value} selection",
            confidence=1.0,
            score=0,
        )

    score, reasons = score_conditions(sync_type, conditions)
    method = SyncMethod.BULK if score > 0 else SyncMethod.API
    return SyncDecision(
        method=method,
        reason=", ".join(reasons) if reasons else f"Default {method.value} selection",
        confidence=min(abs(score) / 100, 1.0),
        score=score,
    )


def _mentions_rate_limit(text: Optional[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return "429" in lowered or "rate limit" in lowered


async def analyze_conditions(
    session: AsyncSession,
    sync_type: SyncType,
    gate: RateLimitGate,
) -> SyncConditions:
    """Collect decision inputs for one sync type.

    Args:
        session: Async database session
        sync_type: Dataset to analyze
        gate: Shared rate-limit state

    Returns:
        SyncConditions snapshot
    """
    now = datetime.now(timezone.utc)

    is_rate_limited = gate.is_limited(SYNC_TYPE_ENDPOINTS[sync_type])
    if not is_rate_limited:
        recent = await operations.get_recent_sync_logs(
            session,
            sync_type=sync_type,
            limit=RATE_LIMIT_LOOKBACK_LOGS,
            since=now - RATE_LIMIT_LOOKBACK,
        )
        is_rate_limited = any(_mentions_rate_limit(entry.error_message) for entry in recent)

    item_count = await operations.count_records(session, sync_type)

    last = await operations.get_last_completed_sync(session, sync_type=sync_type)
    if last is not None and (last.completed_at or last.started_at):
        finished = last.completed_at or last.started_at
        age_hours = max((now - finished).total_seconds() / 3600, 0.0)
    else:
        age_hours = NO_SYNC_AGE_HOURS

    error_count = await operations.count_recent_api_errors(session, sync_type, now - ERROR_LOOKBACK)

    conditions = SyncConditions(
        is_rate_limited=is_rate_limited,
        item_count_estimate=item_count,
        is_full_refresh_due=age_hours > FULL_REFRESH_AGE_HOURS or item_count > LARGE_DATASET,
        last_sync_age_hours=round(age_hours, 2),
        recent_api_error_count=error_count,
    )
    logger.debug("sync_conditions_analyzed", sync_type=sync_type.value, **conditions.model_dump())
    return conditions
