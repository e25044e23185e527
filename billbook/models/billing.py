from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from billbook.db.base import Base


BILL_TYPES = ("sale", "purchase")
PAYMENT_METHODS = ("unpaid", "cash", "online")


class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # sale/purchase
    bill_number: Mapped[int] = mapped_column(Integer, nullable=False)
    bill_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Counterparty snapshot taken when the bill is written.
    party_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    party_name: Mapped[str] = mapped_column(String(255), nullable=False)
    party_phone: Mapped[str] = mapped_column(String(40), nullable=False)

    additional_charges: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    discounts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    optional_fields: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    photos: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    method: Mapped[str] = mapped_column(String(20), nullable=False)  # unpaid/cash/online
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    balance_due: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("business_id", "type", "bill_number", name="uq_bills_business_type_number"),
        Index("ix_bills_user_business_date", "user_id", "business_id", "bill_date"),
        Index("ix_bills_business_type_date", "business_id", "type", "bill_date"),
    )


class BillItem(Base):
    __tablename__ = "bill_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    bill_id: Mapped[str] = mapped_column(String(36), ForeignKey("bills.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    # No FK: a bill keeps its line items after the product is deleted.
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class BillCounter(Base):
    """Per (business, bill type) sequence backing bill_number."""
    __tablename__ = "bill_counters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("business_id", "type", name="uq_bill_counters_business_type"),
    )
