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
from app.db.models.purchasing import PurchaseOrder, PurchaseOrderLine, PurchaseOrderStatus as S, Vendor
from app.db.session import transaction
from app.events import bus
from services.inventory import ledger

log = logging.getLogger(__name__)

TRANSITIONS: dict[str, tuple[str, ...]] = {
    S.PENDING.value: (S.PENDING_APPROVAL.value, S.ORDERED.value, S.CANCELLED.value),
    S.PENDING_APPROVAL.value: (S.ORDERED.value, S.CANCELLED.value),
    S.ORDERED.value: (S.RECEIVED.value, S.CANCELLED.value),
    S.RECEIVED.value: (),
    S.CANCELLED.value: (),
}

EDITABLE = (S.PENDING.value, S.PENDING_APPROVAL.value, S.ORDERED.value)


@dataclass(frozen=True)
class POLineView:
    product_id: str
    product_name: str
    quantity: int
    unit_cost: Decimal

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_cost": float(self.unit_cost),
        }


@dataclass(frozen=True)
class PurchaseOrderView:
    id: str
    po_number: str
    vendor_id: str
    vendor_name: str
    status: str
    order_date: date
    expected_delivery_date: date | None
    received_date: datetime | None
    total_cost: Decimal
    lines: tuple[POLineView, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "po_number": self.po_number,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "status": self.status,
            "order_date": self.order_date.isoformat(),
            "expected_delivery_date": self.expected_delivery_date.isoformat() if self.expected_delivery_date else None,
            "received_date": self.received_date.isoformat() if self.received_date else None,
            "total_cost": float(self.total_cost),
            "lines": [ln.to_dict() for ln in self.lines],
            "allowed_transitions": list(TRANSITIONS.get(self.status, ())),
        }


def _view(db: Session, po: PurchaseOrder) -> PurchaseOrderView:
    names = {}
    for ln in po.lines:
        p = db.get(Product, ln.product_id)
        names[ln.product_id] = p.name if p else ln.product_id
    return PurchaseOrderView(
        id=po.id,
        po_number=po.po_number,
        vendor_id=po.vendor_id,
        vendor_name=po.vendor.name if po.vendor else po.vendor_id,
        status=po.status,
        order_date=po.order_date,
        expected_delivery_date=po.expected_delivery_date,
        received_date=po.received_date,
        total_cost=Decimal(po.total_cost or 0),
        lines=tuple(
            POLineView(ln.product_id, names[ln.product_id], ln.quantity, Decimal(ln.unit_cost)) for ln in po.lines
        ),
    )


# ============= VENDORS =============

def vendor_dict(v: Vendor) -> dict:
    return {
        "id": v.id,
        "name": v.name,
        "contact_person": v.contact_person,
        "email": v.email,
        "phone": v.phone,
        "lead_time_days": v.lead_time_days,
    }


def create_vendor(
    db: Session,
    *,
    name: str,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    lead_time_days: int | None = None,
) -> dict:
    if not (name or "").strip():
        raise ValidationError("Vendor name is required")
    if lead_time_days is not None and lead_time_days < 0:
        raise ValidationError("lead_time_days must be zero or more")
    with transaction(db):
        v = Vendor(name=name.strip(), contact_person=contact_person, email=email, phone=phone, lead_time_days=lead_time_days)
        db.add(v)
        db.flush()
        record_activity(db, action="Vendor Added", details=f"Added vendor: {v.name}", entity_type="vendor", entity_id=v.id)
        out = vendor_dict(v)
    return out


def list_vendors(db: Session) -> list[dict]:
    return [vendor_dict(v) for v in db.query(Vendor).order_by(Vendor.name.asc()).all()]


# ============= PURCHASE ORDERS =============

def _lines(db: Session, lines: Iterable[tuple[str, int, object]]) -> list[tuple[str, int, Decimal]]:
    out = []
    for product_id, quantity, cost in lines:
        if db.get(Product, product_id) is None:
            raise ValidationError(f"Unknown product {product_id}")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Line quantities must be whole numbers of at least 1")
        try:
            unit_cost = Decimal(str(cost)).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            raise ValidationError("Line cost must be a number")
        if unit_cost < 0:
            raise ValidationError("Line cost must be zero or more")
        out.append((product_id, quantity, unit_cost))
    if not out:
        raise ValidationError("A purchase order needs at least one line")
    return out


def _set_lines(po: PurchaseOrder, lines: list[tuple[str, int, Decimal]]) -> None:
    po.lines.clear()
    for n, (product_id, quantity, unit_cost) in enumerate(lines, start=1):
        po.lines.append(PurchaseOrderLine(line_number=n, product_id=product_id, quantity=quantity, unit_cost=unit_cost))
    po.total_cost = sum((q * c for _, q, c in lines), Decimal("0.00"))


def _load(db: Session, po_id: str, *, for_update: bool = False) -> PurchaseOrder:
    q = db.query(PurchaseOrder).filter(PurchaseOrder.id == po_id)
    if for_update:
        q = q.with_for_update().populate_existing()
    po = q.first()
    if po is None:
        raise NotFoundError(f"Unknown purchase order {po_id}", po_id=po_id)
    return po


def get_purchase_order(db: Session, po_id: str) -> PurchaseOrderView:
    return _view(db, _load(db, po_id))


def list_purchase_orders(db: Session, *, status: str | None = None) -> list[PurchaseOrderView]:
    q = db.query(PurchaseOrder)
    if status:
        q = q.filter(PurchaseOrder.status == status)
    return [_view(db, po) for po in q.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.created_at.desc()).all()]


def create_purchase_order(
    db: Session,
    *,
    vendor_id: str,
    lines: Iterable[tuple[str, int, object]],
    order_date: date | None = None,
    expected_delivery_date: date | None = None,
    requires_approval: bool = False,
) -> PurchaseOrderView:
    with transaction(db):
        vendor = db.get(Vendor, vendor_id)
        if vendor is None:
            raise ValidationError(f"Unknown vendor {vendor_id}")
        checked = _lines(db, lines)
        order_date = order_date or utcnow().date()
        if expected_delivery_date is not None and expected_delivery_date < order_date:
            raise ValidationError("Expected delivery cannot be before the order date")
        po = PurchaseOrder(
            po_number=f"PO-{str(uuid.uuid4())[:8].upper()}",
            vendor_id=vendor.id,
            status=(S.PENDING_APPROVAL if requires_approval else S.PENDING).value,
            order_date=order_date,
            expected_delivery_date=expected_delivery_date,
        )
        _set_lines(po, checked)
        db.add(po)
        db.flush()
        record_activity(
            db,
            action="Purchase Order Created",
            details=f"Created PO #{po.po_number} for {vendor.name}.",
            entity_type="purchase_order",
            entity_id=po.id,
        )
        bus.publish(db, "purchasing.po.created", {"po_id": po.id, "po_number": po.po_number, "vendor_id": vendor.id})
        view = _view(db, po)
    return view


def update_purchase_order(
    db: Session,
    po_id: str,
    *,
    lines: Iterable[tuple[str, int, object]] | None = None,
    expected_delivery_date: date | None = None,
) -> PurchaseOrderView:
    with transaction(db):
        po = _load(db, po_id, for_update=True)
        if po.status not in EDITABLE:
            raise InvalidTransitionError(po.status, po.status, f"PO #{po.po_number} is {po.status} and can no longer be edited")
        if lines is not None:
            checked = _lines(db, lines)
            if po.lines:
                po.lines.clear()
                db.flush()
            _set_lines(po, checked)
        if expected_delivery_date is not None:
            if expected_delivery_date < po.order_date:
                raise ValidationError("Expected delivery cannot be before the order date")
            po.expected_delivery_date = expected_delivery_date
        db.flush()
        record_activity(
            db,
            action="Purchase Order Updated",
            details=f"Updated PO #{po.po_number}.",
            entity_type="purchase_order",
            entity_id=po.id,
        )
        bus.publish(db, "purchasing.po.updated", {"po_id": po.id, "po_number": po.po_number})
        view = _view(db, po)
    return view


def set_status(db: Session, po_id: str, new_status: str) -> PurchaseOrderView:
    """Move a PO along its lifecycle; ``received`` is handed to ``receive``."""
    try:
        target = S(new_status).value
    except ValueError:
        raise ValidationError(f"Unknown purchase order status {new_status}")
    if target == S.RECEIVED.value:
        return receive(db, po_id)

    with transaction(db):
        po = _load(db, po_id, for_update=True)
        current = po.status
        if target not in TRANSITIONS.get(current, ()):
            raise InvalidTransitionError(current, target)
        po.status = target
        db.flush()
        record_activity(
            db,
            action="Purchase Order Status Updated",
            details=f"Set PO #{po.po_number} to {target}",
            entity_type="purchase_order",
            entity_id=po.id,
            payload={"from": current, "to": target},
        )
        bus.publish(
            db,
            "purchasing.po.status_changed",
            {"po_id": po.id, "po_number": po.po_number, "from": current, "to": target},
        )
        view = _view(db, po)
    return view


def approve(db: Session, po_id: str) -> PurchaseOrderView:
    return set_status(db, po_id, S.ORDERED.value)


def reject(db: Session, po_id: str) -> PurchaseOrderView:
    return set_status(db, po_id, S.CANCELLED.value)


def receive(db: Session, po_id: str) -> PurchaseOrderView:
    """Book every line into stock and close the PO. Runs at most once."""
    with transaction(db):
        po = _load(db, po_id, for_update=True)
        if S.RECEIVED.value not in TRANSITIONS.get(po.status, ()):
            raise InvalidTransitionError(po.status, S.RECEIVED.value)
        ledger.apply_stock_changes(
            db,
            [ledger.StockChange(ln.product_id, ln.quantity) for ln in po.lines],
            reason=ledger.PURCHASE_RECEIPT,
            reference_type="purchase_order",
            reference_id=po.id,
        )
        po.status = S.RECEIVED.value
        po.received_date = utcnow()
        db.flush()
        record_activity(
            db,
            action="PO Received",
            details=f"PO #{po.po_number} marked as received. Stock updated.",
            entity_type="purchase_order",
            entity_id=po.id,
        )
        bus.publish(
            db,
            "purchasing.po.received",
            {
                "po_id": po.id,
                "po_number": po.po_number,
                "lines": [{"product_id": ln.product_id, "quantity": ln.quantity} for ln in po.lines],
            },
        )
        view = _view(db, po)
    log.info("received PO %s (%d line(s))", view.po_number, len(view.lines))
    return view
