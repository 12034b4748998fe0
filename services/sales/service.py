"""Invoices and refunds.

Creating an invoice takes its quantities out of stock through the ledger; a
refund puts the returned quantities back, shrinks the invoice lines and moves
the invoice to ``partially-refunded`` or ``refunded``.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.activity import record_activity
from app.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from app.db.models.common import utcnow
from app.db.models.inventory import Product
from app.db.models.sales import Invoice, InvoiceLine, InvoiceStatus as S, Refund, RefundLine
from app.db.session import transaction
from app.events import bus
from services.inventory import ledger

log = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Statuses a user may set directly; the refund states are derived
SETTABLE = (S.PENDING.value, S.PAID.value, S.OVERDUE.value)
REFUNDABLE = (S.PAID.value, S.PARTIALLY_REFUNDED.value)


@dataclass(frozen=True)
class InvoiceLineView:
    product_id: str
    product_name: str
    quantity: int
    price: Decimal
    cost: Decimal

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": float(self.price),
            "cost": float(self.cost),
        }


@dataclass(frozen=True)
class InvoiceView:
    id: str
    invoice_number: str
    customer_name: str | None
    status: str
    invoice_date: date
    discount: Decimal
    tax_rate: Decimal
    amount: Decimal
    lines: tuple[InvoiceLineView, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_name": self.customer_name,
            "status": self.status,
            "invoice_date": self.invoice_date.isoformat(),
            "discount": float(self.discount),
            "tax_rate": float(self.tax_rate),
            "amount": float(self.amount),
            "lines": [ln.to_dict() for ln in self.lines],
        }


@dataclass(frozen=True)
class RefundView:
    id: str
    invoice_id: str
    amount: Decimal
    reason: str
    lines: tuple[tuple[str, int, Decimal], ...]
    created_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": float(self.amount),
            "reason": self.reason,
            "lines": [{"product_id": p, "quantity": q, "price": float(pr)} for p, q, pr in self.lines],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _product_name(db: Session, product_id: str) -> str:
    p = db.get(Product, product_id)
    return p.name if p else product_id


def _view(db: Session, inv: Invoice) -> InvoiceView:
    return InvoiceView(
        id=inv.id,
        invoice_number=inv.invoice_number,
        customer_name=inv.customer_name,
        status=inv.status,
        invoice_date=inv.invoice_date,
        discount=Decimal(inv.discount or 0),
        tax_rate=Decimal(inv.tax_rate or 0),
        amount=Decimal(inv.amount or 0),
        lines=tuple(
            InvoiceLineView(ln.product_id, _product_name(db, ln.product_id), ln.quantity, Decimal(ln.price), Decimal(ln.cost))
            for ln in inv.lines
        ),
    )


def _refund_view(r: Refund) -> RefundView:
    return RefundView(
        id=r.id,
        invoice_id=r.invoice_id,
        amount=Decimal(r.amount),
        reason=r.reason,
        lines=tuple((ln.product_id, ln.quantity, Decimal(ln.price)) for ln in r.lines),
        created_at=r.created_at,
    )


def _percent(value, field: str) -> Decimal:
    try:
        d = Decimal(str(value or 0))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if d < 0 or d > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return d


def invoice_total(lines: Iterable[tuple[int, Decimal]], discount: Decimal, tax_rate: Decimal) -> Decimal:
    """Subtotal, less the discount percentage, plus tax on the discounted amount."""
    subtotal = sum((Decimal(q) * p for q, p in lines), Decimal("0"))
    discounted = subtotal - subtotal * discount / 100
    return (discounted + discounted * tax_rate / 100).quantize(CENT)


def _load(db: Session, invoice_id: str, *, for_update: bool = False) -> Invoice:
    q = db.query(Invoice).filter(Invoice.id == invoice_id)
    if for_update:
        q = q.with_for_update().populate_existing()
    inv = q.first()
    if inv is None:
        raise NotFoundError(f"Unknown invoice {invoice_id}", invoice_id=invoice_id)
    return inv


def get_invoice(db: Session, invoice_id: str) -> InvoiceView:
    return _view(db, _load(db, invoice_id))


def list_invoices(db: Session, *, status: str | None = None) -> list[InvoiceView]:
    q = db.query(Invoice)
    if status:
        q = q.filter(Invoice.status == status)
    return [_view(db, inv) for inv in q.order_by(Invoice.invoice_date.desc(), Invoice.created_at.desc()).all()]


def refundable_invoices(db: Session) -> list[InvoiceView]:
    rows = db.query(Invoice).filter(Invoice.status.in_(REFUNDABLE)).order_by(Invoice.invoice_date.desc()).all()
    return [_view(db, inv) for inv in rows]


def create_invoice(
    db: Session,
    *,
    lines: Iterable[tuple[str, int]],
    customer_name: str | None = None,
    status: str = S.PENDING.value,
    invoice_date: date | None = None,
    discount=0,
    tax_rate=0,
) -> InvoiceView:
    """Bill ``lines`` (product id, quantity) at current catalog price and cost."""
    if status not in SETTABLE:
        raise ValidationError(f"status must be one of: {', '.join(SETTABLE)}")
    discount = _percent(discount, "discount")
    tax_rate = _percent(tax_rate, "tax_rate")
    lines = list(lines)
    if not lines:
        raise ValidationError("An invoice needs at least one line")

    with transaction(db):
        priced: list[tuple[str, int, Decimal, Decimal]] = []
        for product_id, quantity in lines:
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise ValidationError("Line quantities must be whole numbers of at least 1")
            p = db.get(Product, product_id)
            if p is None:
                raise ValidationError(f"Unknown product {product_id}")
            priced.append((product_id, quantity, Decimal(p.price), Decimal(p.cost)))

        inv = Invoice(
            invoice_number=f"INV-{str(uuid.uuid4())[:8].upper()}",
            customer_name=customer_name,
            status=status,
            invoice_date=invoice_date or utcnow().date(),
            discount=discount,
            tax_rate=tax_rate,
            amount=invoice_total(((q, pr) for _, q, pr, _ in priced), discount, tax_rate),
        )
        for n, (product_id, quantity, price, cost) in enumerate(priced, start=1):
            inv.lines.append(InvoiceLine(line_number=n, product_id=product_id, quantity=quantity, price=price, cost=cost))
        db.add(inv)
        db.flush()
        ledger.apply_stock_changes(
            db,
            [ledger.StockChange(product_id, -quantity) for product_id, quantity, _, _ in priced],
            reason=ledger.SALE,
            reference_type="invoice",
            reference_id=inv.id,
        )
        record_activity(
            db,
            action="Invoice Created",
            details=f"Created invoice {inv.invoice_number} for {customer_name or 'walk-in customer'}",
            entity_type="invoice",
            entity_id=inv.id,
        )
        bus.publish(db, "sales.invoice.created", {"invoice_id": inv.id, "invoice_number": inv.invoice_number, "amount": str(inv.amount)})
        view = _view(db, inv)
    return view


def set_invoice_status(db: Session, invoice_id: str, new_status: str) -> InvoiceView:
    if new_status not in SETTABLE:
        raise ValidationError(f"status must be one of: {', '.join(SETTABLE)}")
    with transaction(db):
        inv = _load(db, invoice_id, for_update=True)
        if inv.status not in SETTABLE:
            raise InvalidTransitionError(inv.status, new_status, f"Invoice {inv.invoice_number} has been refunded")
        previous = inv.status
        inv.status = new_status
        db.flush()
        record_activity(
            db,
            action="Invoice Status Updated",
            details=f"Set invoice {inv.invoice_number} to {new_status}",
            entity_type="invoice",
            entity_id=inv.id,
            payload={"from": previous, "to": new_status},
        )
        bus.publish(db, "sales.invoice.status_changed", {"invoice_id": inv.id, "from": previous, "to": new_status})
        view = _view(db, inv)
    return view


def process_refund(db: Session, invoice_id: str, lines: Iterable[tuple[str, int]], reason: str) -> RefundView:
    """Return ``lines`` (product id, quantity) from a paid invoice."""
    if not (reason or "").strip():
        raise ValidationError("A reason for the refund is required")
    requested = [(pid, q) for pid, q in lines if q]
    if not requested:
        raise ValidationError("You must select at least one item to refund.")

    with transaction(db):
        inv = _load(db, invoice_id, for_update=True)
        if inv.status not in REFUNDABLE:
            raise InvalidTransitionError(inv.status, S.REFUNDED.value, f"Invoice {inv.invoice_number} is {inv.status} and cannot be refunded")

        invoiced: dict[str, list[InvoiceLine]] = {}
        for ln in inv.lines:
            invoiced.setdefault(ln.product_id, []).append(ln)
        totals: dict[str, int] = {}
        for product_id, quantity in requested:
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
                raise ValidationError("Refund quantities must be whole numbers")
            if product_id not in invoiced:
                raise ValidationError(f"Product {product_id} is not on invoice {inv.invoice_number}")
            totals[product_id] = totals.get(product_id, 0) + quantity
        for product_id, quantity in totals.items():
            remaining = sum(ln.quantity for ln in invoiced[product_id])
            if quantity > remaining:
                raise ValidationError(
                    "Cannot refund more than purchased.",
                    product_id=product_id,
                    requested=quantity,
                    remaining=remaining,
                )

        ledger.apply_stock_changes(
            db,
            [ledger.StockChange(pid, q) for pid, q in totals.items()],
            reason=ledger.REFUND,
            reference_type="invoice",
            reference_id=inv.id,
            note=reason.strip(),
        )
        refund = Refund(invoice_id=inv.id, reason=reason.strip(), amount=Decimal("0"))
        amount = Decimal("0")
        for product_id, quantity in totals.items():
            # Lines are drawn down in line order
            for line in invoiced[product_id]:
                taken = min(quantity, line.quantity)
                if not taken:
                    continue
                line.quantity -= taken
                quantity -= taken
                amount += Decimal(taken) * Decimal(line.price)
                refund.lines.append(RefundLine(product_id=product_id, quantity=taken, price=line.price))
        refund.amount = amount.quantize(CENT)
        db.add(refund)

        remaining = sum(ln.quantity for ln in inv.lines)
        inv.status = (S.REFUNDED if remaining <= 0 else S.PARTIALLY_REFUNDED).value
        db.flush()
        record_activity(
            db,
            action="Refund Processed",
            details=f"Processed refund of {refund.amount} for invoice {inv.invoice_number}. Reason: {refund.reason}",
            entity_type="invoice",
            entity_id=inv.id,
            payload={"refund_id": refund.id, "status": inv.status},
        )
        bus.publish(
            db,
            "sales.refund.processed",
            {"invoice_id": inv.id, "refund_id": refund.id, "amount": str(refund.amount), "status": inv.status},
        )
        view = _refund_view(refund)
    log.info("refunded %s on invoice %s", view.amount, invoice_id)
    return view


def list_refunds(db: Session, *, invoice_id: str | None = None) -> list[RefundView]:
    q = db.query(Refund)
    if invoice_id:
        q = q.filter(Refund.invoice_id == invoice_id)
    return [_refund_view(r) for r in q.order_by(Refund.created_at.desc()).all()]
