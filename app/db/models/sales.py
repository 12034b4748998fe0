"""
MODULE: SALES
Invoices and refunds
"""

from __future__ import annotations

import enum
from datetime import date
from decimal import Decimal

from sqlalchemy import String, Date, Integer, Numeric, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt

# ============= INVOICES =============

class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially-refunded"


class Invoice(Base, HasId, HasCreatedAt):
    __tablename__ = "sales_invoice"

    invoice_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    customer_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    status: Mapped[str] = mapped_column(String(24), default=InvoiceStatus.PENDING.value, nullable=False, index=True)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Percentages, 0-100
    discount: Mapped[Decimal] = mapped_column(Numeric(9, 4), default=0, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), default=0, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=0, nullable=False)

    lines: Mapped[list["InvoiceLine"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.line_number",
    )


class InvoiceLine(Base, HasId, HasCreatedAt):
    __tablename__ = "sales_invoice_line"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("sales_invoice.id"), nullable=False, index=True)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("inv_product.id"), nullable=False, index=True)
    # Reduced by refunds; what is still refundable
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)  # at time of sale
    cost: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="lines")

# ============= REFUNDS =============

class Refund(Base, HasId, HasCreatedAt):
    __tablename__ = "sales_refund"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("sales_invoice.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    lines: Mapped[list["RefundLine"]] = relationship(back_populates="refund", cascade="all, delete-orphan")


class RefundLine(Base, HasId, HasCreatedAt):
    __tablename__ = "sales_refund_line"

    refund_id: Mapped[str] = mapped_column(ForeignKey("sales_refund.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("inv_product.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    refund: Mapped[Refund] = relationship(back_populates="lines")


Index("ix_sales_invoice_status_date", Invoice.status, Invoice.invoice_date)
