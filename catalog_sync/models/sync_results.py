"""Pydantic models for sync decisions, executor results and aggregate outcomes."""
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from catalog_sync.models.enums import SyncType, SyncMethod, SyncMode, SyncLogStatus


class ApiResponse(BaseModel):
    """Envelope returned by every supplier API call."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def not_found(self) -> bool:
        if self.status_code == 404:
            return True
        return bool(self.error) and "not found" in self.error.lower()


class BulkFetchResult(BaseModel):
    """Envelope returned by a bulk feed fetch."""
    success: bool
    data: List[Dict[str, Any]] = Field(default_factory=list)
    total_records: int = 0
    errors: List[str] = Field(default_factory=list)


class SyncConditions(BaseModel):
    """Inputs to the decision engine for one sync type."""
    is_rate_limited: bool = False
    item_count_estimate: int = Field(default=0, ge=0)
    is_full_refresh_due: bool = False
    last_sync_age_hours: float = Field(default=999.0, ge=0)
    recent_api_error_count: int = Field(default=0, ge=0)


class SyncDecision(BaseModel):
    """Channel chosen for one sync type, with rationale."""
    method: SyncMethod
    reason: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    score: int = 0


class SyncResult(BaseModel):
    """Outcome of one executor call.

    ``success`` is true only when the run completed; per-item failures
    are counted in ``failed`` without failing the run.
    """
    success: bool
    status: SyncLogStatus
    sync_type: SyncType
    method: SyncMethod
    mode: SyncMode = SyncMode.FULL
    processed: int = 0
    updated: int = 0
    added: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    retry_after_seconds: Optional[int] = None
    message: Optional[str] = None
    sync_log_id: Optional[str] = None


class SyncRequest(BaseModel):
    """Request to sync one sync type or all of them."""
    sync_type: Literal["all", "inventory", "pricing", "kits"] = "all"
    mode: SyncMode = SyncMode.FULL
    force_method: Optional[SyncMethod] = None
    stale_after_hours: Optional[int] = Field(default=None, ge=1)
    triggered_by: str = "manual"

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, v: SyncMode) -> SyncMode:
        if v is SyncMode.SINGLE:
            raise ValueError("single-record syncs are requested per identifier, not per sync type")
        return v

    @property
    def sync_types(self) -> List[SyncType]:
        if self.sync_type == "all":
            return list(SyncType)
        return [SyncType(self.sync_type)]


class TypeSyncOutcome(BaseModel):
    """Decision and result for one sync type within an orchestrated run."""
    sync_type: SyncType
    decision: SyncDecision
    result: SyncResult


class ComprehensiveSyncResult(BaseModel):
    """Aggregate outcome of an orchestrated sync run."""
    sync_method: Literal["api", "bulk", "hybrid"]
    outcomes: List[TypeSyncOutcome] = Field(default_factory=list)
    overall_success: bool = False
    total_processed: int = 0
    total_updated: int = 0
    total_added: int = 0
    total_failed: int = 0
    total_duration_ms: int = 0
    recommendations: List[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime

    @property
    def results(self) -> Dict[str, SyncResult]:
        return {o.sync_type.value: o.result for o in self.outcomes}


class SchedulerStatus(BaseModel):
    """Point-in-time view of the scheduler for operators."""
    initialized: bool = False
    sync_in_progress: bool = False
    current_operation: Optional[str] = None
    last_full_sync: Optional[datetime] = None
    last_incremental_sync: Optional[datetime] = None
    next_full_sync: Optional[datetime] = None
    next_incremental_sync: Optional[datetime] = None
    retry_count: int = 0
    pending_updates: int = 0
    errors: List[str] = Field(default_factory=list)
