"""
MODULE: INVENTORY
Product catalog and the append-only stock ledger
"""

from __future__ import annotations

import enum
from decimal import Decimal

from sqlalchemy import String, Integer, Numeric, ForeignKey, Index, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt


class ProductType(str, enum.Enum):
    COMPONENT = "component"
    STANDARD = "standard"
    MANUFACTURED = "manufactured"


# ============= PRODUCT MASTER =============

class Product(Base, HasId, HasCreatedAt):
    __tablename__ = "inv_product"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_inv_product_stock_nonneg"),
    )

    sku: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    product_type: Mapped[str] = mapped_column(String(16), default=ProductType.STANDARD.value, nullable=False, index=True)
    # component|standard|manufactured

    # Changed only through services.inventory.ledger
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)
    reorder_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_low_stock(self) -> bool:
        return self.reorder_threshold is not None and self.stock <= self.reorder_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock == 0


# ============= STOCK LEDGER =============

class StockMovement(Base, HasId, HasCreatedAt):
    """One signed stock change, with the balance it left behind."""
    __tablename__ = "inv_stock_movement"

    product_id: Mapped[str] = mapped_column(ForeignKey("inv_product.id"), nullable=False, index=True)
    qty_change: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    # INITIAL|ADJUSTMENT|PRODUCTION_CONSUME|PRODUCTION_OUTPUT|PURCHASE_RECEIPT|SALE|REFUND
    reference_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    actor: Mapped[str] = mapped_column(String(128), nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    note: Mapped[str | None] = mapped_column(String(512), nullable=True)


Index("ix_inv_movement_product_time", StockMovement.product_id, StockMovement.created_at)
