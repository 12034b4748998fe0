"""Bill of materials lookup and maintenance.

A BOM is the single-level recipe of a finished product: which component
products, and how many of each, go into one unit. Lookups are a plain query
every time; nothing is cached between calls.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.activity import record_activity
from app.core.errors import BomNotFoundError, ConflictError, NotFoundError, ValidationError
from app.db.models.inventory import Product, ProductType
from app.db.models.mrp import BOM, BOMLine, ProductionOrder, ProductionOrderStatus
from app.db.session import transaction
from app.events import bus

log = logging.getLogger(__name__)

_TERMINAL = (ProductionOrderStatus.COMPLETED.value, ProductionOrderStatus.CANCELLED.value)


@dataclass(frozen=True)
class BomItem:
    component_id: str
    component_name: str
    quantity: int

    def to_dict(self) -> dict:
        return {"component_id": self.component_id, "component_name": self.component_name, "quantity": self.quantity}


@dataclass(frozen=True)
class BomView:
    id: str
    bom_number: str
    product_id: str
    product_name: str
    items: tuple[BomItem, ...]
    created_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bom_number": self.bom_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "items": [i.to_dict() for i in self.items],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _names(db: Session, ids: Iterable[str]) -> dict[str, str]:
    ids = list(set(ids))
    if not ids:
        return {}
    return {pid: name for pid, name in db.query(Product.id, Product.name).filter(Product.id.in_(ids)).all()}


def _view(db: Session, b: BOM) -> BomView:
    names = _names(db, [b.product_id, *(ln.component_id for ln in b.lines)])
    return BomView(
        id=b.id,
        bom_number=b.bom_number,
        product_id=b.product_id,
        product_name=names.get(b.product_id, b.product_id),
        items=tuple(
            BomItem(component_id=ln.component_id, component_name=names.get(ln.component_id, ln.component_id), quantity=ln.quantity)
            for ln in b.lines
        ),
        created_at=b.created_at,
    )


def find_bom(db: Session, product_id: str) -> BOM | None:
    return db.query(BOM).filter(BOM.product_id == product_id).first()


def resolve_bom(db: Session, product_id: str) -> BomView:
    """The BOM for ``product_id``; raises ``BomNotFoundError`` if there is none."""
    b = find_bom(db, product_id)
    if b is None:
        raise BomNotFoundError(product_id)
    return _view(db, b)


def required_components(bom: BomView, quantity: int) -> list[tuple[str, int]]:
    """Component quantities needed to build ``quantity`` units."""
    return [(item.component_id, item.quantity * quantity) for item in bom.items]


def manufacturable_products(db: Session) -> list[dict]:
    """Products that have a BOM, i.e. valid targets for a production order."""
    rows = (
        db.query(Product.id, Product.name, BOM.id)
        .join(BOM, BOM.product_id == Product.id)
        .order_by(Product.name.asc())
        .all()
    )
    return [{"id": pid, "name": name, "bom_id": bom_id} for pid, name, bom_id in rows]


def bom_candidates(db: Session) -> dict[str, list[dict]]:
    """Products allowed as a BOM's finished good, and as its components."""
    products = db.query(Product).order_by(Product.name.asc()).all()
    return {
        "products": [
            {"id": p.id, "name": p.name, "product_type": p.product_type}
            for p in products
            if p.product_type != ProductType.COMPONENT.value
        ],
        "components": [
            {"id": p.id, "name": p.name, "product_type": p.product_type, "stock": p.stock}
            for p in products
            if p.product_type != ProductType.MANUFACTURED.value
        ],
    }


def _validate(db: Session, product_id: str, lines: list[tuple[str, int]], *, bom_id: str | None = None) -> Product:
    product = db.get(Product, product_id) if product_id else None
    if product is None:
        raise ValidationError("A finished product is required")
    if product.product_type == ProductType.COMPONENT.value:
        raise ValidationError(f"{product.name} is a component and cannot have a bill of materials")

    existing = find_bom(db, product_id)
    if existing is not None and existing.id != bom_id:
        raise ValidationError(f"{product.name} already has a bill of materials", bom_id=existing.id)

    if not lines:
        raise ValidationError("A bill of materials needs at least one component")

    seen: set[str] = set()
    for component_id, qty in lines:
        if component_id == product_id:
            raise ValidationError("A product cannot be a component of itself")
        if component_id in seen:
            raise ValidationError(f"Component {component_id} is listed more than once")
        seen.add(component_id)
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
            raise ValidationError("Component quantities must be whole numbers of at least 1")
        component = db.get(Product, component_id)
        if component is None:
            raise ValidationError(f"Unknown component {component_id}")
        if component.product_type == ProductType.MANUFACTURED.value:
            raise ValidationError(f"{component.name} is manufactured and cannot be used as a component")
    return product


def _set_lines(db: Session, b: BOM, lines: list[tuple[str, int]]) -> None:
    if b.lines:
        b.lines.clear()
        # Old rows must be gone before the unique (bom, component) rows return
        db.flush()
    for n, (component_id, qty) in enumerate(lines, start=1):
        b.lines.append(BOMLine(line_number=n, component_id=component_id, quantity=qty))


def _get(db: Session, bom_id: str) -> BOM:
    b = db.get(BOM, bom_id)
    if b is None:
        raise NotFoundError(f"Unknown bill of materials {bom_id}", bom_id=bom_id)
    return b


def get_bom(db: Session, bom_id: str) -> BomView:
    return _view(db, _get(db, bom_id))


def list_boms(db: Session, *, search: str | None = None) -> list[BomView]:
    q = db.query(BOM).join(Product, Product.id == BOM.product_id)
    if search:
        q = q.filter(func.lower(Product.name).like(f"%{search.strip().lower()}%"))
    return [_view(db, b) for b in q.order_by(BOM.created_at.desc()).all()]


def create_bom(db: Session, product_id: str, lines: Iterable[tuple[str, int]]) -> BomView:
    lines = list(lines)
    with transaction(db):
        product = _validate(db, product_id, lines)
        b = BOM(bom_number=f"BOM-{str(uuid.uuid4())[:8].upper()}", product_id=product_id)
        _set_lines(db, b, lines)
        db.add(b)
        db.flush()
        record_activity(db, action="BOM Created", details=f"Created BOM for {product.name}", entity_type="bom", entity_id=b.id)
        bus.publish(db, "mrp.bom.created", {"bom_id": b.id, "product_id": product_id})
        view = _view(db, b)
    log.info("created BOM %s for product %s", view.bom_number, product_id)
    return view


def update_bom(
    db: Session,
    bom_id: str,
    *,
    product_id: str | None = None,
    lines: Iterable[tuple[str, int]] | None = None,
) -> BomView:
    with transaction(db):
        b = _get(db, bom_id)
        new_product_id = product_id or b.product_id
        new_lines = list(lines) if lines is not None else [(ln.component_id, ln.quantity) for ln in b.lines]
        product = _validate(db, new_product_id, new_lines, bom_id=b.id)
        if new_product_id != b.product_id and _open_orders(db, b.id):
            raise ConflictError("Open production orders use this bill of materials", bom_id=b.id)
        b.product_id = new_product_id
        if lines is not None:
            _set_lines(db, b, new_lines)
        db.flush()
        record_activity(db, action="BOM Updated", details=f"Updated BOM for {product.name}", entity_type="bom", entity_id=b.id)
        bus.publish(db, "mrp.bom.updated", {"bom_id": b.id, "product_id": b.product_id})
        view = _view(db, b)
    return view


def _open_orders(db: Session, bom_id: str) -> list[ProductionOrder]:
    return (
        db.query(ProductionOrder)
        .filter(ProductionOrder.bom_id == bom_id)
        .filter(ProductionOrder.status.notin_(_TERMINAL))
        .all()
    )


def delete_bom(db: Session, bom_id: str) -> None:
    with transaction(db):
        b = _get(db, bom_id)
        if _open_orders(db, b.id):
            raise ConflictError("Open production orders use this bill of materials", bom_id=b.id)
        # Finished orders keep their history but lose the link
        db.query(ProductionOrder).filter(ProductionOrder.bom_id == b.id).update(
            {ProductionOrder.bom_id: None}, synchronize_session=False
        )
        product_name = _names(db, [b.product_id]).get(b.product_id, b.product_id)
        db.delete(b)
        db.flush()
        record_activity(db, action="BOM Deleted", details=f"Deleted BOM for {product_name}", entity_type="bom", entity_id=bom_id)
        bus.publish(db, "mrp.bom.deleted", {"bom_id": bom_id})
