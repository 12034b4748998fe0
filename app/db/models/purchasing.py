"""
MODULE: PURCHASING
Vendors, purchase orders and receiving
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Date, Integer, Numeric, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt

# ============= VENDOR MANAGEMENT =============

class Vendor(Base, HasId, HasCreatedAt):
    """Vendor/Supplier master"""
    __tablename__ = "purchase_vendor"

    name: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    contact_person: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

# ============= PURCHASE ORDERS =============

class PurchaseOrderStatus(str, enum.Enum):
    PENDING = "pending"
    PENDING_APPROVAL = "pending-approval"
    ORDERED = "ordered"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PurchaseOrder(Base, HasId, HasCreatedAt):
    __tablename__ = "purchase_order"

    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    vendor_id: Mapped[str] = mapped_column(ForeignKey("purchase_vendor.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(24), default=PurchaseOrderStatus.PENDING.value, nullable=False, index=True)

    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)

    vendor: Mapped[Vendor] = relationship()
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_number",
    )


class PurchaseOrderLine(Base, HasId, HasCreatedAt):
    __tablename__ = "purchase_order_line"

    po_id: Mapped[str] = mapped_column(ForeignKey("purchase_order.id"), nullable=False, index=True)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("inv_product.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    purchase_order: Mapped[PurchaseOrder] = relationship(back_populates="lines")


Index("ix_purchase_order_vendor_status", PurchaseOrder.vendor_id, PurchaseOrder.status)
