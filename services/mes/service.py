"""Production order lifecycle.

::

    planned      -> in-progress | on-hold | cancelled | completed
    in-progress  -> on-hold | cancelled | completed
    on-hold      -> in-progress | cancelled | completed
    completed, cancelled: terminal

Completion never goes through the plain status setter. It consumes the BOM's
components and credits the finished product through the stock ledger, and
either everything (stock, status, completion date) commits or nothing does.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.orm import Session

from app.core.activity import record_activity
from app.core.context import new_correlation_id
from app.core.errors import BomNotFoundError, InsufficientStockError, InvalidTransitionError, NotFoundError, ValidationError
from app.db.models.common import utcnow
from app.db.models.inventory import Product
from app.db.models.mrp import ProductionOrder, ProductionOrderStatus as S
from app.db.session import transaction
from app.events import bus
from services.inventory import ledger
from services.mrp.bom import BomView, required_components, resolve_bom

log = logging.getLogger(__name__)

TRANSITIONS: dict[str, tuple[str, ...]] = {
    S.PLANNED.value: (S.IN_PROGRESS.value, S.ON_HOLD.value, S.CANCELLED.value, S.COMPLETED.value),
    S.IN_PROGRESS.value: (S.ON_HOLD.value, S.CANCELLED.value, S.COMPLETED.value),
    S.ON_HOLD.value: (S.IN_PROGRESS.value, S.CANCELLED.value, S.COMPLETED.value),
    S.COMPLETED.value: (),
    S.CANCELLED.value: (),
}

TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


@dataclass(frozen=True)
class OrderView:
    id: str
    order_number: str
    product_id: str
    product_name: str
    bom_id: str | None
    quantity: int
    status: str
    scheduled_start_date: date
    scheduled_end_date: date
    actual_start_date: datetime | None
    actual_completion_date: datetime | None
    notes: str | None
    created_at: datetime | None

    @property
    def actions(self) -> list[str]:
        return allowed_transitions(self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "bom_id": self.bom_id,
            "quantity": self.quantity,
            "status": self.status,
            "scheduled_start_date": self.scheduled_start_date.isoformat(),
            "scheduled_end_date": self.scheduled_end_date.isoformat(),
            "actual_start_date": self.actual_start_date.isoformat() if self.actual_start_date else None,
            "actual_completion_date": self.actual_completion_date.isoformat() if self.actual_completion_date else None,
            "notes": self.notes,
            "allowed_transitions": self.actions,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _view(db: Session, o: ProductionOrder) -> OrderView:
    product = db.get(Product, o.product_id)
    return OrderView(
        id=o.id,
        order_number=o.order_number,
        product_id=o.product_id,
        product_name=product.name if product else o.product_id,
        bom_id=o.bom_id,
        quantity=o.quantity,
        status=o.status,
        scheduled_start_date=o.scheduled_start_date,
        scheduled_end_date=o.scheduled_end_date,
        actual_start_date=o.actual_start_date,
        actual_completion_date=o.actual_completion_date,
        notes=o.notes,
        created_at=o.created_at,
    )


def allowed_transitions(status: str) -> list[str]:
    return list(TRANSITIONS.get(status, ()))


def _status(value: str) -> str:
    try:
        return S(value).value
    except ValueError:
        allowed = ", ".join(s.value for s in S)
        raise ValidationError(f"status must be one of: {allowed}")


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be a whole number of at least 1")
    return quantity


def _check_schedule(start: date, end: date) -> None:
    if start is None or end is None:
        raise ValidationError("Scheduled start and end dates are required")
    if end < start:
        raise ValidationError("Scheduled end date cannot be before the start date")


def _bom_for(db: Session, product_id: str) -> BomView:
    if db.get(Product, product_id) is None:
        raise ValidationError(f"Unknown product {product_id}")
    try:
        return resolve_bom(db, product_id)
    except BomNotFoundError:
        raise ValidationError("Selected product must have a Bill of Materials", product_id=product_id)


def _load(db: Session, order_id: str, *, for_update: bool = False) -> ProductionOrder:
    q = db.query(ProductionOrder).filter(ProductionOrder.id == order_id)
    if for_update:
        q = q.with_for_update().populate_existing()
    o = q.first()
    if o is None:
        raise NotFoundError(f"Unknown production order {order_id}", order_id=order_id)
    return o


def get_order(db: Session, order_id: str) -> OrderView:
    return _view(db, _load(db, order_id))


def list_orders(db: Session, *, status: str | None = None, limit: int = 500) -> list[OrderView]:
    q = db.query(ProductionOrder)
    if status:
        q = q.filter(ProductionOrder.status == _status(status))
    rows = q.order_by(ProductionOrder.scheduled_start_date.asc(), ProductionOrder.created_at.asc()).limit(limit).all()
    return [_view(db, o) for o in rows]


def create_order(
    db: Session,
    *,
    product_id: str,
    quantity: int,
    scheduled_start_date: date,
    scheduled_end_date: date,
    notes: str | None = None,
) -> OrderView:
    _check_quantity(quantity)
    _check_schedule(scheduled_start_date, scheduled_end_date)
    with transaction(db):
        bom = _bom_for(db, product_id)
        o = ProductionOrder(
            order_number=f"MO-{str(uuid.uuid4())[:8].upper()}",
            product_id=product_id,
            bom_id=bom.id,
            quantity=quantity,
            status=S.PLANNED.value,
            scheduled_start_date=scheduled_start_date,
            scheduled_end_date=scheduled_end_date,
            notes=notes,
        )
        db.add(o)
        db.flush()
        record_activity(
            db,
            action="Production Order Created",
            details=f"Created order {o.order_number} for {quantity} x {bom.product_name}",
            entity_type="production_order",
            entity_id=o.id,
        )
        bus.publish(
            db,
            "production.order.created",
            {"order_id": o.id, "order_number": o.order_number, "product_id": product_id, "quantity": quantity},
        )
        view = _view(db, o)
    log.info("created production order %s (%d x %s)", view.order_number, quantity, product_id)
    return view


_UNSET = object()


def update_order(
    db: Session,
    order_id: str,
    *,
    product_id: str | None = None,
    quantity: int | None = None,
    scheduled_start_date: date | None = None,
    scheduled_end_date: date | None = None,
    notes=_UNSET,
) -> OrderView:
    """Edit the non-status fields of an order that is not finished."""
    if quantity is not None:
        _check_quantity(quantity)
    with transaction(db):
        o = _load(db, order_id, for_update=True)
        if o.status in TERMINAL:
            raise InvalidTransitionError(o.status, o.status, f"Order {o.order_number} is {o.status} and can no longer be edited")
        if product_id is not None and product_id != o.product_id:
            o.bom_id = _bom_for(db, product_id).id
            o.product_id = product_id
        if quantity is not None:
            o.quantity = quantity
        start = scheduled_start_date or o.scheduled_start_date
        end = scheduled_end_date or o.scheduled_end_date
        _check_schedule(start, end)
        o.scheduled_start_date, o.scheduled_end_date = start, end
        if notes is not _UNSET:
            o.notes = notes
        db.flush()
        record_activity(
            db,
            action="Production Order Updated",
            details=f"Updated order {o.order_number}",
            entity_type="production_order",
            entity_id=o.id,
        )
        bus.publish(db, "production.order.updated", {"order_id": o.id, "order_number": o.order_number})
        view = _view(db, o)
    return view


def transition(db: Session, order_id: str, new_status: str) -> OrderView:
    """Move an order to ``new_status``; completion is handed to ``complete_order``."""
    target = _status(new_status)
    if target == S.COMPLETED.value:
        return complete_order(db, order_id)

    with transaction(db):
        o = _load(db, order_id, for_update=True)
        current = o.status
        if target not in TRANSITIONS.get(current, ()):
            log.warning("rejected transition of %s: %s -> %s", o.order_number, current, target)
            raise InvalidTransitionError(current, target)
        o.status = target
        if target == S.IN_PROGRESS.value and o.actual_start_date is None:
            o.actual_start_date = utcnow()
        db.flush()
        record_activity(
            db,
            action="Production Order Status Updated",
            details=f"Set order {o.order_number} to {target}",
            entity_type="production_order",
            entity_id=o.id,
            payload={"from": current, "to": target},
        )
        bus.publish(
            db,
            "production.order.status_changed",
            {"order_id": o.id, "order_number": o.order_number, "from": current, "to": target},
        )
        view = _view(db, o)
    log.info("production order %s: %s -> %s", view.order_number, current, target)
    return view


def complete_order(db: Session, order_id: str) -> OrderView:
    """Finish an order: consume components, credit the product, mark completed.

    Raises ``InsufficientStockError`` with every short component, leaving the
    order and all stock exactly as they were.
    """
    with transaction(db):
        o = _load(db, order_id, for_update=True)
        current = o.status
        if S.COMPLETED.value not in TRANSITIONS.get(current, ()):
            log.warning("rejected completion of %s in status %s", o.order_number, current)
            raise InvalidTransitionError(current, S.COMPLETED.value)

        try:
            bom = resolve_bom(db, o.product_id)
        except BomNotFoundError:
            raise ValidationError(f"BOM not found for the product of order {o.order_number}", order_id=o.id)
        consumed = required_components(bom, o.quantity)

        correlation_id = new_correlation_id()
        try:
            ledger.apply_stock_changes(
                db,
                [ledger.StockChange(component_id, -required) for component_id, required in consumed],
                reason=ledger.PRODUCTION_CONSUME,
                reference_type="production_order",
                reference_id=o.id,
                correlation_id=correlation_id,
            )
        except InsufficientStockError:
            log.warning("cannot complete %s: not enough components", o.order_number)
            raise
        ledger.apply_stock_changes(
            db,
            [ledger.StockChange(o.product_id, o.quantity)],
            reason=ledger.PRODUCTION_OUTPUT,
            reference_type="production_order",
            reference_id=o.id,
            correlation_id=correlation_id,
        )

        o.status = S.COMPLETED.value
        o.bom_id = bom.id
        o.actual_completion_date = utcnow()
        db.flush()
        record_activity(
            db,
            action="Production Order Completed",
            details=f"Order {o.order_number} completed and stock updated.",
            entity_type="production_order",
            entity_id=o.id,
            payload={"from": current, "consumed": [{"component_id": c, "quantity": q} for c, q in consumed]},
        )
        bus.publish(
            db,
            "production.order.completed",
            {
                "order_id": o.id,
                "order_number": o.order_number,
                "product_id": o.product_id,
                "quantity": o.quantity,
                "consumed": [{"component_id": c, "quantity": q} for c, q in consumed],
            },
            correlation_id=correlation_id,
        )
        view = _view(db, o)
    log.info("completed production order %s (+%d %s)", view.order_number, view.quantity, view.product_id)
    return view
