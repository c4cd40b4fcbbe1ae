"""SyncLog ORM model: append-only audit trail of sync attempts."""
from sqlalchemy import String, Integer, Text, DateTime, func
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, UUIDMixin, enum_values
from catalog_sync.models.enums import SyncType, SyncMethod, SyncMode, SyncLogStatus
from datetime import datetime


class SyncLog(Base, UUIDMixin):
    """One row per sync attempt.

    Created as ``running`` when a sync starts and finalized exactly once
    with a terminal status. The decision engine reads these rows to
    estimate staleness and recent error rate.
    """

    __tablename__ = "sync_logs"

    sync_type: Mapped[SyncType] = mapped_column(
        SQLEnum(SyncType, name="sync_type", values_callable=enum_values),
        nullable=False,
        index=True
    )
    channel: Mapped[SyncMethod] = mapped_column(
        SQLEnum(SyncMethod, name="sync_channel", values_callable=enum_values),
        nullable=False
    )
    mode: Mapped[SyncMode] = mapped_column(
        SQLEnum(SyncMode, name="sync_mode", values_callable=enum_values),
        nullable=False,
        index=True
    )
    status: Mapped[SyncLogStatus] = mapped_column(
        SQLEnum(SyncLogStatus, name="sync_log_status", values_callable=enum_values),
        nullable=False,
        default=SyncLogStatus.RUNNING,
        index=True
    )
    triggered_by: Mapped[str] = mapped_column(String(50), nullable=False, default="manual")
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    rate_limit_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<SyncLog(id={self.id}, type='{self.sync_type.value}', status='{self.status.value}')>"
