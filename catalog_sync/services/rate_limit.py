"""Per-endpoint rate-limit state for the supplier API channel.

A single RateLimitGate is created by the worker at startup and injected
into the API client, the API executor, the orchestrator and the
scheduler, so every reader sees the same cooldowns.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitEntry:
    """Cooldown for one endpoint."""
    reset_at: datetime
    reason: str = "rate limited"


class RateLimitGate:
    """Tracks which supplier endpoints are currently throttled.

    Usage:
        gate = RateLimitGate()
        gate.mark_limited("/pricing", retry_after_seconds=600, reason="HTTP 429")
        if gate.is_limited("/pricing"):
            wait = gate.remaining_cooldown("/pricing")
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            clock: Returns the current aware datetime (injectable for tests)
        """
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[str, RateLimitEntry] = {}

    def _purge(self, endpoint: str) -> Optional[RateLimitEntry]:
        entry = self._entries.get(endpoint)
        if entry is not None and entry.reset_at <= self._clock():
            del self._entries[endpoint]
            logger.info("rate_limit_expired", endpoint=endpoint)
            return None
        return entry

    def mark_limited(
        self,
        endpoint: str,
        retry_after_seconds: int,
        reason: str = "rate limited",
    ) -> datetime:
        """Start (or extend) a cooldown for an endpoint.

        An existing longer cooldown is never shortened.

        Returns:
            Time at which the endpoint becomes available again
        """
        reset_at = self._clock() + timedelta(seconds=max(int(retry_after_seconds), 1))
        current = self._purge(endpoint)
        if current is not None and current.reset_at >= reset_at:
            return current.reset_at

        self._entries[endpoint] = RateLimitEntry(reset_at=reset_at, reason=reason)
        logger.warning(
            "rate_limit_marked",
            endpoint=endpoint,
            reset_at=reset_at.isoformat(),
            retry_after_seconds=retry_after_seconds,
            reason=reason,
        )
        return reset_at

    def is_limited(self, endpoint: str) -> bool:
        return self._purge(endpoint) is not None

    def remaining_cooldown(self, endpoint: str) -> int:
        """Whole seconds until the endpoint is available (0 if not limited)."""
        entry = self._purge(endpoint)
        if entry is None:
            return 0
        return max(math.ceil((entry.reset_at - self._clock()).total_seconds()), 0)

    def reset_at(self, endpoint: str) -> Optional[datetime]:
        entry = self._purge(endpoint)
        return entry.reset_at if entry else None

    def clear(self, endpoint: str) -> None:
        if self._entries.pop(endpoint, None) is not None:
            logger.info("rate_limit_cleared", endpoint=endpoint)

    def any_limited(self) -> bool:
        return any(self.is_limited(endpoint) for endpoint in list(self._entries))

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        """Current cooldowns keyed by endpoint, for status reporting."""
        result: Dict[str, Dict[str, object]] = {}
        for endpoint in list(self._entries):
            entry = self._purge(endpoint)
            if entry is None:
                continue
            result[endpoint] = {
                "reset_at": entry.reset_at.isoformat(),
                "remaining_seconds": self.remaining_cooldown(endpoint),
                "reason": entry.reason,
            }
        return result
