"""PriceRecord ORM model for supplier price tiers."""
from sqlalchemy import String, Numeric, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, UUIDMixin, TimestampMixin
from decimal import Decimal
from datetime import datetime


class PriceRecord(Base, UUIDMixin, TimestampMixin):
    """Price tiers for one part.

    Superseded as a whole on every pricing sync: absent tiers are
    written as NULL rather than keeping the previous value.
    """

    __tablename__ = "price_records"

    vcpn: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    list_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    dealer_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    jobber_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    retail_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    core_charge: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    effective_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PriceRecord(vcpn='{self.vcpn}', list_price={self.list_price})>"
