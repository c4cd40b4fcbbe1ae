"""CatalogItem ORM model: the canonical inventory row."""
from sqlalchemy import String, Numeric, Integer, Boolean, Text, DateTime, CheckConstraint, select
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, UUIDMixin, TimestampMixin, enum_values
from catalog_sync.models.enums import ItemSyncStatus, RecordState
from decimal import Decimal
from datetime import datetime
from typing import Dict, Any
import uuid


class CatalogItem(Base, UUIDMixin, TimestampMixin):
    """Catalog row kept in sync with the supplier feed.

    Rows are never deleted. A row absent from a newer bulk file is
    tagged ``record_state=removed`` with the session that removed it,
    and default queries (``active_items()``) exclude it.

    Attributes:
        vcpn: Supplier part code, unique across the store
        quantity: Overall on-hand quantity
        regional_quantities: Per-warehouse-region quantities
        attributes: Codes and freight details without a dedicated column
        sync_status: Outcome of the last per-row supplier sync
        upload_id: Upload session or feed that last wrote the row
        removed_by_session: Upload session that soft-deleted the row
    """

    __tablename__ = "catalog_items"
    __table_args__ = (
        CheckConstraint('quantity >= 0', name='check_catalog_quantity_non_negative'),
        CheckConstraint('price IS NULL OR price >= 0', name='check_catalog_price_non_negative'),
    )

    vcpn: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    part_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    manufacturer_part_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    brand: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    regional_quantities: Mapped[Dict[str, int]] = mapped_column(
        postgresql.JSONB(astext_type=Text),
        nullable=False,
        default=dict,
        server_default="{}"
    )
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    core_charge: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    weight: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    height: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    length: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    width: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    case_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_kit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_hazmat: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_oversized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_non_returnable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_chemical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    upsable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    attributes: Mapped[Dict[str, Any]] = mapped_column(
        postgresql.JSONB(astext_type=Text),
        nullable=False,
        default=dict,
        server_default="{}"
    )

    # Supplier sync metadata
    sync_status: Mapped[ItemSyncStatus | None] = mapped_column(
        SQLEnum(ItemSyncStatus, name="item_sync_status", values_callable=enum_values),
        nullable=True,
        index=True
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True
    )
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    upload_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Soft deletion
    record_state: Mapped[RecordState] = mapped_column(
        SQLEnum(RecordState, name="record_state", values_callable=enum_values),
        nullable=False,
        default=RecordState.ACTIVE,
        server_default=RecordState.ACTIVE.value,
        index=True
    )
    removed_by_session: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    removed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<CatalogItem(id={self.id}, vcpn='{self.vcpn}', state='{self.record_state.value}')>"


def active_items():
    """SELECT over catalog rows that have not been soft-deleted."""
    return select(CatalogItem).where(CatalogItem.record_state == RecordState.ACTIVE)
