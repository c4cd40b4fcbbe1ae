"""PendingUpdateRequest ORM model: queued single-record refresh requests."""
from sqlalchemy import String, Integer, Text, DateTime, CheckConstraint, func
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, UUIDMixin, enum_values
from catalog_sync.models.enums import UpdateRequestStatus
from datetime import datetime


class PendingUpdateRequest(Base, UUIDMixin):
    """Single-record refresh request drained by the scheduler's queue processor.

    Priority runs 1-10; higher values are processed first, ties by
    submission time.
    """

    __tablename__ = "pending_update_requests"
    __table_args__ = (
        CheckConstraint('priority >= 1 AND priority <= 10', name='check_update_priority'),
    )

    vcpn: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False, default="user")
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    status: Mapped[UpdateRequestStatus] = mapped_column(
        SQLEnum(UpdateRequestStatus, name="update_request_status", values_callable=enum_values),
        nullable=False,
        default=UpdateRequestStatus.PENDING,
        index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PendingUpdateRequest(vcpn='{self.vcpn}', priority={self.priority}, status='{self.status.value}')>"
