from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.activity import record_activity
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.models.inventory import Product, ProductType, StockMovement
from app.db.models.mrp import BOM, BOMLine, ProductionOrder
from app.db.models.purchasing import PurchaseOrderLine
from app.db.models.sales import InvoiceLine
from app.db.session import transaction
from app.events import bus
from services.inventory import ledger

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductView:
    id: str
    name: str
    sku: str | None
    product_type: str
    stock: int
    cost: Decimal
    price: Decimal
    reorder_threshold: int | None
    category: str | None
    description: str | None
    created_at: datetime | None

    @classmethod
    def from_model(cls, p: Product) -> "ProductView":
        return cls(
            id=p.id,
            name=p.name,
            sku=p.sku,
            product_type=p.product_type,
            stock=p.stock,
            cost=Decimal(p.cost or 0),
            price=Decimal(p.price or 0),
            reorder_threshold=p.reorder_threshold,
            category=p.category,
            description=p.description,
            created_at=p.created_at,
        )

    @property
    def low_stock(self) -> bool:
        return self.reorder_threshold is not None and self.stock <= self.reorder_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "product_type": self.product_type,
            "stock": self.stock,
            "cost": float(self.cost),
            "price": float(self.price),
            "reorder_threshold": self.reorder_threshold,
            "category": self.category,
            "description": self.description,
            "low_stock": self.low_stock,
            "out_of_stock": self.stock == 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def _money(value, field: str) -> Decimal:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not d.is_finite() or d < 0:
        raise ValidationError(f"{field} must be zero or more")
    return d.quantize(Decimal("0.01"))


def _product_type(value: str | None) -> str:
    try:
        return ProductType(value or ProductType.STANDARD.value).value
    except ValueError:
        allowed = ", ".join(t.value for t in ProductType)
        raise ValidationError(f"product_type must be one of: {allowed}")


def _non_negative_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a whole number, zero or more")
    return value


def _get(db: Session, product_id: str) -> Product:
    p = db.get(Product, product_id)
    if p is None:
        raise NotFoundError(f"Unknown product {product_id}", product_id=product_id)
    return p


def get_product(db: Session, product_id: str) -> ProductView:
    return ProductView.from_model(_get(db, product_id))


def list_products(
    db: Session,
    *,
    search: str | None = None,
    product_type: str | None = None,
    limit: int = 500,
) -> list[ProductView]:
    q = db.query(Product)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(or_(func.lower(Product.name).like(like), func.lower(Product.sku).like(like)))
    if product_type:
        q = q.filter(Product.product_type == _product_type(product_type))
    return [ProductView.from_model(p) for p in q.order_by(Product.name.asc()).limit(limit).all()]


def low_stock_report(db: Session) -> list[ProductView]:
    """Products at or under their reorder threshold, emptiest first."""
    rows = (
        db.query(Product)
        .filter(Product.reorder_threshold.isnot(None))
        .filter(Product.stock <= Product.reorder_threshold)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )
    return [ProductView.from_model(p) for p in rows]


def movement_history(db: Session, product_id: str, *, limit: int = 200) -> list[ledger.MovementView]:
    _get(db, product_id)
    rows = (
        db.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc())
        .limit(limit)
        .all()
    )
    return [ledger.MovementView.from_model(m) for m in rows]


def create_product(
    db: Session,
    *,
    name: str,
    product_type: str | None = None,
    stock: int = 0,
    cost=0,
    price=0,
    sku: str | None = None,
    reorder_threshold: int | None = None,
    category: str | None = None,
    description: str | None = None,
) -> ProductView:
    if not (name or "").strip():
        raise ValidationError("Product name is required")
    stock = _non_negative_int(stock, "stock")
    if reorder_threshold is not None:
        reorder_threshold = _non_negative_int(reorder_threshold, "reorder_threshold")

    with transaction(db):
        if sku and db.query(Product).filter(Product.sku == sku).first():
            raise ConflictError(f"SKU {sku} is already in use", sku=sku)
        p = Product(
            name=name.strip(),
            sku=sku or None,
            product_type=_product_type(product_type),
            stock=0,
            cost=_money(cost, "cost"),
            price=_money(price, "price"),
            reorder_threshold=reorder_threshold,
            category=category,
            description=description,
        )
        db.add(p)
        db.flush()
        if stock:
            # Opening balance goes through the ledger like any other change
            ledger.apply_stock_changes(
                db,
                [ledger.StockChange(p.id, stock)],
                reason=ledger.INITIAL,
                reference_type="product",
                reference_id=p.id,
            )
        record_activity(db, action="Product Added", details=f"Added new product: {p.name}", entity_type="product", entity_id=p.id)
        bus.publish(db, "inventory.product.created", {"product_id": p.id, "name": p.name, "stock": p.stock})
        view = ProductView.from_model(p)
    log.info("created product %s (%s)", view.id, view.name)
    return view


def update_product(db: Session, product_id: str, **changes) -> ProductView:
    """Edit catalog fields. ``stock`` is not editable here; use the ledger."""
    changes.pop("stock", None)
    with transaction(db):
        p = _get(db, product_id)
        if "name" in changes:
            if not (changes["name"] or "").strip():
                raise ValidationError("Product name is required")
            p.name = changes["name"].strip()
        if "sku" in changes and changes["sku"] != p.sku:
            sku = changes["sku"] or None
            if sku and db.query(Product).filter(Product.sku == sku, Product.id != p.id).first():
                raise ConflictError(f"SKU {sku} is already in use", sku=sku)
            p.sku = sku
        if changes.get("product_type") is not None:
            new_type = _product_type(changes["product_type"])
            if new_type != p.product_type:
                _check_type_change(db, p, new_type)
                p.product_type = new_type
        if changes.get("cost") is not None:
            p.cost = _money(changes["cost"], "cost")
        if changes.get("price") is not None:
            p.price = _money(changes["price"], "price")
        if "reorder_threshold" in changes:
            rt = changes["reorder_threshold"]
            p.reorder_threshold = None if rt is None else _non_negative_int(rt, "reorder_threshold")
        for field in ("category", "description"):
            if field in changes:
                setattr(p, field, changes[field])
        db.flush()
        record_activity(
            db,
            action="Product Updated",
            details=f"Updated product: {p.name} (ID: {p.id})",
            entity_type="product",
            entity_id=p.id,
        )
        bus.publish(db, "inventory.product.updated", {"product_id": p.id})
        view = ProductView.from_model(p)
    return view


def _check_type_change(db: Session, p: Product, new_type: str) -> None:
    if new_type == ProductType.COMPONENT.value and db.query(BOM).filter(BOM.product_id == p.id).first():
        raise ValidationError(f"{p.name} has a bill of materials and cannot become a component")
    if new_type == ProductType.MANUFACTURED.value and db.query(BOMLine).filter(BOMLine.component_id == p.id).first():
        raise ValidationError(f"{p.name} is used as a component and cannot become manufactured")


def delete_product(db: Session, product_id: str) -> None:
    with transaction(db):
        p = _get(db, product_id)
        if db.query(BOM).filter(BOM.product_id == p.id).first() or db.query(BOMLine).filter(BOMLine.component_id == p.id).first():
            raise ConflictError(f"{p.name} is used by a bill of materials", product_id=p.id)
        if db.query(ProductionOrder).filter(ProductionOrder.product_id == p.id).first():
            raise ConflictError(f"{p.name} has production orders", product_id=p.id)
        if (
            db.query(PurchaseOrderLine).filter(PurchaseOrderLine.product_id == p.id).first()
            or db.query(InvoiceLine).filter(InvoiceLine.product_id == p.id).first()
        ):
            raise ConflictError(f"{p.name} appears on purchase orders or invoices", product_id=p.id)

        db.query(StockMovement).filter(StockMovement.product_id == p.id).delete(synchronize_session=False)
        name = p.name
        db.delete(p)
        db.flush()
        record_activity(
            db,
            action="Product Deleted",
            details=f"Deleted product: {name} (ID: {product_id})",
            entity_type="product",
            entity_id=product_id,
        )
        bus.publish(db, "inventory.product.deleted", {"product_id": product_id})
