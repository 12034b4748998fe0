from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.mrp import bom as boms

router = APIRouter(prefix="/mrp", tags=["mrp"])


# ---- Schemas ----
class BomLineIn(BaseModel):
    component_id: str
    quantity: int = Field(..., ge=1)


class BomIn(BaseModel):
    product_id: str
    items: list[BomLineIn] = Field(..., min_length=1)


class BomPatch(BaseModel):
    product_id: str | None = None
    items: list[BomLineIn] | None = Field(default=None, min_length=1)


def _lines(items: list[BomLineIn] | None):
    return None if items is None else [(i.component_id, i.quantity) for i in items]


@router.get("/health")
def health():
    return {"ok": True, "service": "mrp"}


@router.get("/boms")
def list_boms(search: str | None = None, db: Session = Depends(get_db)):
    return [b.to_dict() for b in boms.list_boms(db, search=search)]


@router.post("/boms", status_code=201)
def create_bom(payload: BomIn, db: Session = Depends(get_db)):
    return boms.create_bom(db, payload.product_id, _lines(payload.items)).to_dict()


@router.get("/boms/candidates")
def bom_candidates(db: Session = Depends(get_db)):
    return boms.bom_candidates(db)


@router.get("/boms/by-product/{product_id}")
def resolve_bom(product_id: str, db: Session = Depends(get_db)):
    return boms.resolve_bom(db, product_id).to_dict()


@router.get("/boms/{bom_id}")
def get_bom(bom_id: str, db: Session = Depends(get_db)):
    return boms.get_bom(db, bom_id).to_dict()


@router.patch("/boms/{bom_id}")
def update_bom(bom_id: str, payload: BomPatch, db: Session = Depends(get_db)):
    return boms.update_bom(db, bom_id, product_id=payload.product_id, lines=_lines(payload.items)).to_dict()


@router.delete("/boms/{bom_id}")
def delete_bom(bom_id: str, db: Session = Depends(get_db)):
    boms.delete_bom(db, bom_id)
    return {"ok": True, "deleted": True}


@router.get("/manufacturable-products")
def manufacturable_products(db: Session = Depends(get_db)):
    return boms.manufacturable_products(db)
