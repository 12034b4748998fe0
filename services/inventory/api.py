from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.inventory import ledger, service

router = APIRouter(prefix="/inventory", tags=["inventory"])


# ---- Schemas ----
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    sku: str | None = Field(default=None, max_length=64)
    product_type: str = "standard"  # component|standard|manufactured
    stock: int = Field(default=0, ge=0)
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_threshold: int | None = Field(default=None, ge=0)
    category: str | None = Field(default=None, max_length=64)
    description: str | None = None


class ProductPatch(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=256)
    sku: str | None = Field(default=None, max_length=64)
    product_type: str | None = None
    cost: Decimal | None = Field(default=None, ge=0)
    price: Decimal | None = Field(default=None, ge=0)
    reorder_threshold: int | None = Field(default=None, ge=0)
    category: str | None = Field(default=None, max_length=64)
    description: str | None = None


class AdjustmentIn(BaseModel):
    qty_change: int
    reason: str = Field(..., min_length=1, max_length=512)


@router.get("/health")
def health():
    return {"ok": True, "service": "inventory"}


@router.get("/products")
def list_products(search: str | None = None, product_type: str | None = None, limit: int = 500, db: Session = Depends(get_db)):
    return [p.to_dict() for p in service.list_products(db, search=search, product_type=product_type, limit=limit)]


@router.post("/products", status_code=201)
def create_product(payload: ProductIn, db: Session = Depends(get_db)):
    return service.create_product(db, **payload.model_dump()).to_dict()


@router.get("/products/low-stock")
def low_stock(db: Session = Depends(get_db)):
    return [p.to_dict() for p in service.low_stock_report(db)]


@router.get("/products/{product_id}")
def get_product(product_id: str, db: Session = Depends(get_db)):
    return service.get_product(db, product_id).to_dict()


@router.patch("/products/{product_id}")
def update_product(product_id: str, payload: ProductPatch, db: Session = Depends(get_db)):
    return service.update_product(db, product_id, **payload.model_dump(exclude_unset=True)).to_dict()


@router.delete("/products/{product_id}")
def delete_product(product_id: str, db: Session = Depends(get_db)):
    service.delete_product(db, product_id)
    return {"ok": True, "deleted": True}


@router.get("/products/{product_id}/movements")
def movements(product_id: str, limit: int = 200, db: Session = Depends(get_db)):
    return [m.to_dict() for m in service.movement_history(db, product_id, limit=limit)]


@router.post("/products/{product_id}/adjust")
def adjust(product_id: str, payload: AdjustmentIn, db: Session = Depends(get_db)):
    return ledger.adjust_stock(db, product_id, payload.qty_change, payload.reason).to_dict()


@router.post("/availability")
def availability(payload: dict[str, int], db: Session = Depends(get_db)):
    """Check product id -> quantity requirements against current stock."""
    shortages = ledger.check_availability(db, payload.items())
    return {"ok": not shortages, "shortages": [s.to_dict() for s in shortages]}
