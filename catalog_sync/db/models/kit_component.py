"""KitComponent ORM model."""
from sqlalchemy import String, Numeric, Integer, Boolean, Text, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, UUIDMixin, TimestampMixin
from decimal import Decimal
from datetime import datetime


class KitComponent(Base, UUIDMixin, TimestampMixin):
    """One component line of a kit, keyed by (kit_vcpn, component_vcpn)."""

    __tablename__ = "kit_components"
    __table_args__ = (
        UniqueConstraint('kit_vcpn', 'component_vcpn', name='unique_kit_component'),
        CheckConstraint('quantity > 0', name='check_kit_component_quantity'),
    )

    kit_vcpn: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    component_vcpn: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    component_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    core_charge: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<KitComponent(kit='{self.kit_vcpn}', component='{self.component_vcpn}', qty={self.quantity})>"
