"""UploadSession and StagingRecord ORM models for bulk file uploads."""
from sqlalchemy import String, Integer, Boolean, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column, relationship
from catalog_sync.db.base import Base, UUIDMixin, TimestampMixin, enum_values
from catalog_sync.models.enums import UploadStatus, UploadStage, StagingStatus, StagingAction
from datetime import datetime
from typing import Dict, Any, List
import uuid


class UploadSession(Base, UUIDMixin, TimestampMixin):
    """One bulk-file submission and its aggregate validation counts."""

    __tablename__ = "upload_sessions"

    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[UploadStatus] = mapped_column(
        SQLEnum(UploadStatus, name="upload_status", values_callable=enum_values),
        nullable=False,
        default=UploadStatus.PROCESSING,
        index=True
    )
    stage: Mapped[UploadStage] = mapped_column(
        SQLEnum(UploadStage, name="upload_stage", values_callable=enum_values),
        nullable=False,
        default=UploadStage.PARSING
    )
    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    valid_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invalid_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    corrected_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    staging_records: Mapped[List["StagingRecord"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<UploadSession(id={self.id}, file='{self.filename}', status='{self.status.value}')>"


class StagingRecord(Base, UUIDMixin, TimestampMixin):
    """One row of an uploaded bulk file awaiting reconciliation.

    Lifecycle: created valid/invalid with action ``unknown``, classified
    insert/update against the catalog, then ``processed`` once committed.
    """

    __tablename__ = "staging_records"
    __table_args__ = (
        UniqueConstraint('session_id', 'row_number', name='unique_staging_row'),
    )

    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("upload_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    vcpn: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    original_data: Mapped[Dict[str, Any]] = mapped_column(
        postgresql.JSONB(astext_type=Text),
        nullable=False,
        default=dict
    )
    processed_data: Mapped[Dict[str, Any]] = mapped_column(
        postgresql.JSONB(astext_type=Text),
        nullable=False,
        default=dict
    )
    validation_status: Mapped[StagingStatus] = mapped_column(
        SQLEnum(StagingStatus, name="staging_status", values_callable=enum_values),
        nullable=False,
        index=True
    )
    corrected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    validation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_type: Mapped[StagingAction] = mapped_column(
        SQLEnum(StagingAction, name="staging_action", values_callable=enum_values),
        nullable=False,
        default=StagingAction.UNKNOWN
    )
    existing_item_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    session: Mapped["UploadSession"] = relationship(back_populates="staging_records")

    def __repr__(self) -> str:
        return (
            f"<StagingRecord(row={self.row_number}, vcpn='{self.vcpn}', "
            f"status='{self.validation_status.value}', action='{self.action_type.value}')>"
        )
