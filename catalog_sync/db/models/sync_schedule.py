"""SyncSchedule ORM model: persisted state of the scheduler's periodic jobs."""
from sqlalchemy import String, Integer, Boolean, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, UUIDMixin, TimestampMixin
from datetime import datetime


class SyncSchedule(Base, UUIDMixin, TimestampMixin):
    """One row per scheduler job (daily_full, incremental, pending_updates)."""

    __tablename__ = "sync_schedules"

    job_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    sync_type: Mapped[str] = mapped_column(String(50), nullable=False, default="all")
    schedule: Mapped[str] = mapped_column(String(100), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<SyncSchedule(job='{self.job_name}', enabled={self.enabled}, next={self.next_run_at})>"
