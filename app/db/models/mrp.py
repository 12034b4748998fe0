"""
MODULE: MANUFACTURING
Bills of materials and production orders
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import String, DateTime, Date, Integer, ForeignKey, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt


# ============= BILL OF MATERIALS (BOM) =============

class BOM(Base, HasId, HasCreatedAt):
    __tablename__ = "mrp_bom"

    bom_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    # One BOM per finished product
    product_id: Mapped[str] = mapped_column(ForeignKey("inv_product.id"), unique=True, nullable=False, index=True)

    lines: Mapped[list["BOMLine"]] = relationship(
        back_populates="bom",
        cascade="all, delete-orphan",
        order_by="BOMLine.line_number",
    )


class BOMLine(Base, HasId, HasCreatedAt):
    __tablename__ = "mrp_bom_line"
    __table_args__ = (
        UniqueConstraint("bom_id", "component_id", name="uq_mrp_bom_line_component"),
    )

    bom_id: Mapped[str] = mapped_column(ForeignKey("mrp_bom.id"), nullable=False, index=True)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    component_id: Mapped[str] = mapped_column(ForeignKey("inv_product.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # per unit of finished product

    bom: Mapped[BOM] = relationship(back_populates="lines")


# ============= PRODUCTION ORDERS =============

class ProductionOrderStatus(str, enum.Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProductionOrder(Base, HasId, HasCreatedAt):
    __tablename__ = "mrp_production_order"

    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("inv_product.id"), nullable=False, index=True)
    bom_id: Mapped[str | None] = mapped_column(ForeignKey("mrp_bom.id"), nullable=True, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ProductionOrderStatus.PLANNED.value, nullable=False, index=True)

    scheduled_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    actual_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


Index("ix_mrp_po_status_start", ProductionOrder.status, ProductionOrder.scheduled_start_date)
