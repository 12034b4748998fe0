"""Stock ledger.

Every stock change in the system goes through ``apply_stock_changes``: all
decrements are checked against current stock first, and only when none would
go negative are products mutated and ``StockMovement`` rows written. The
function flushes but never commits; the calling command owns the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from app.core.activity import record_activity
from app.core.context import get_actor, new_correlation_id
from app.core.errors import InsufficientStockError, NotFoundError, Shortage, ValidationError
from app.db.models.inventory import Product, StockMovement
from app.db.session import transaction
from app.events import bus

log = logging.getLogger(__name__)

# Movement reasons
INITIAL = "INITIAL"
ADJUSTMENT = "ADJUSTMENT"
PRODUCTION_CONSUME = "PRODUCTION_CONSUME"
PRODUCTION_OUTPUT = "PRODUCTION_OUTPUT"
PURCHASE_RECEIPT = "PURCHASE_RECEIPT"
SALE = "SALE"
REFUND = "REFUND"


@dataclass(frozen=True)
class StockChange:
    product_id: str
    qty_change: int


@dataclass(frozen=True)
class MovementView:
    id: str
    product_id: str
    qty_change: int
    balance_after: int
    reason: str
    reference_type: str | None
    reference_id: str | None
    actor: str
    correlation_id: str | None
    note: str | None
    created_at: datetime | None

    @classmethod
    def from_model(cls, m: StockMovement) -> "MovementView":
        return cls(
            id=m.id,
            product_id=m.product_id,
            qty_change=m.qty_change,
            balance_after=m.balance_after,
            reason=m.reason,
            reference_type=m.reference_type,
            reference_id=m.reference_id,
            actor=m.actor,
            correlation_id=m.correlation_id,
            note=m.note,
            created_at=m.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "qty_change": self.qty_change,
            "balance_after": self.balance_after,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor": self.actor,
            "correlation_id": self.correlation_id,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _check_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError(f"Stock quantities must be whole numbers, got {qty!r}")
    return qty


def _net_changes(changes: Iterable[StockChange]) -> dict[str, int]:
    # Keeps first-seen order so movements are written in the caller's order
    net: dict[str, int] = {}
    for ch in changes:
        net[ch.product_id] = net.get(ch.product_id, 0) + _check_qty(ch.qty_change)
    return net


def _lock_products(db: Session, product_ids: Iterable[str]) -> dict[str, Product]:
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    rows = (
        db.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {p.id: p for p in rows}


def _shortages(products: dict[str, Product], required: dict[str, int]) -> list[Shortage]:
    out: list[Shortage] = []
    for product_id, qty in required.items():
        if qty <= 0:
            continue
        p = products.get(product_id)
        if p is None:
            # An unknown product has nothing on hand
            out.append(Shortage(product_id=product_id, product_name=product_id, required=qty, available=0))
        elif p.stock < qty:
            out.append(Shortage(product_id=product_id, product_name=p.name, required=qty, available=p.stock))
    return out


def check_availability(db: Session, requirements: Iterable[tuple[str, int]]) -> list[Shortage]:
    """Return every requirement that current stock cannot cover. Read only."""
    required: dict[str, int] = {}
    for product_id, qty in requirements:
        required[product_id] = required.get(product_id, 0) + _check_qty(qty)
    products = {p.id: p for p in db.query(Product).filter(Product.id.in_(list(required))).all()} if required else {}
    return _shortages(products, required)


def apply_stock_changes(
    db: Session,
    changes: Iterable[StockChange],
    *,
    reason: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    actor: str | None = None,
    correlation_id: str | None = None,
    note: str | None = None,
) -> list[StockMovement]:
    """Apply signed stock changes all-or-nothing.

    Raises ``InsufficientStockError`` listing every short product before any
    row is modified. Changes to the same product are netted first.
    """
    net = _net_changes(changes)
    products = _lock_products(db, net)

    unknown_credits = [pid for pid, qty in net.items() if qty >= 0 and pid not in products]
    if unknown_credits:
        raise NotFoundError(f"Unknown product {unknown_credits[0]}", product_id=unknown_credits[0])

    shortages = _shortages(products, {pid: -qty for pid, qty in net.items()})
    if shortages:
        log.warning(
            "stock change rejected (%s %s): %s",
            reference_type or reason,
            reference_id or "-",
            ", ".join(f"{s.product_id} short {s.missing}" for s in shortages),
        )
        raise InsufficientStockError(shortages)

    actor = actor or get_actor()
    correlation_id = correlation_id or new_correlation_id()
    movements: list[StockMovement] = []
    for product_id, qty in net.items():
        if qty == 0:
            continue
        p = products[product_id]
        p.stock = p.stock + qty
        m = StockMovement(
            product_id=product_id,
            qty_change=qty,
            balance_after=p.stock,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            actor=actor,
            correlation_id=correlation_id,
            note=note,
        )
        db.add(m)
        movements.append(m)
    db.flush()
    log.info("applied %d stock movement(s) for %s %s", len(movements), reference_type or reason, reference_id or "-")
    return movements


def adjust_stock(db: Session, product_id: str, qty_change: int, reason: str) -> MovementView:
    """Manual stock correction, guarded like every other change."""
    _check_qty(qty_change)
    if qty_change == 0:
        raise ValidationError("qty_change must not be zero")
    if not (reason or "").strip():
        raise ValidationError("A reason is required for stock adjustments")

    with transaction(db):
        p = db.get(Product, product_id)
        if p is None:
            raise NotFoundError(f"Unknown product {product_id}", product_id=product_id)
        [movement] = apply_stock_changes(
            db,
            [StockChange(product_id, qty_change)],
            reason=ADJUSTMENT,
            reference_type="product",
            reference_id=product_id,
            note=reason.strip(),
        )
        record_activity(
            db,
            action="Stock Adjusted",
            details=f"Adjusted stock of {p.name} by {qty_change:+d} ({reason.strip()})",
            entity_type="product",
            entity_id=product_id,
            payload={"qty_change": qty_change, "balance_after": movement.balance_after},
        )
        bus.publish(
            db,
            "inventory.stock.adjusted",
            {"product_id": product_id, "qty_change": qty_change, "balance_after": movement.balance_after, "reason": reason.strip()},
        )
        view = MovementView.from_model(movement)
    return view
