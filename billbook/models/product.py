from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from billbook.db.base import Base


class Product(Base):
    """
    Catalog entry with its on-hand quantity.

    opening_stock is the quantity the product was created with and never changes.
    current_stock is the running on-hand quantity, moved only by stock deltas.
    """
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    primary_unit: Mapped[str] = mapped_column(String(30), nullable=False, default="pcs", server_default="pcs")
    secondary_unit: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    sale_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default="0")
    purchase_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default="0")
    tax_included: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    opening_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    low_stock_alert: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    hsn: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    gst: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("opening_stock >= 0", name="ck_products_opening_stock_non_negative"),
        CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
        Index("ix_products_business_created_at", "business_id", "created_at"),
    )
