from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.purchasing import service

router = APIRouter(prefix="/purchasing", tags=["purchasing"])


# ---- Schemas ----
class VendorIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    contact_person: str | None = Field(default=None, max_length=128)
    email: str | None = Field(default=None, max_length=256)
    phone: str | None = Field(default=None, max_length=32)
    lead_time_days: int | None = Field(default=None, ge=0)


class POLineIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    cost: Decimal = Field(..., ge=0)


class PurchaseOrderIn(BaseModel):
    vendor_id: str
    lines: list[POLineIn] = Field(..., min_length=1)
    order_date: date | None = None
    expected_delivery_date: date | None = None
    requires_approval: bool = False


class PurchaseOrderPatch(BaseModel):
    lines: list[POLineIn] | None = Field(default=None, min_length=1)
    expected_delivery_date: date | None = None


class StatusIn(BaseModel):
    status: str  # pending|pending-approval|ordered|received|cancelled


def _lines(lines: list[POLineIn] | None):
    return None if lines is None else [(ln.product_id, ln.quantity, ln.cost) for ln in lines]


@router.get("/health")
def health():
    return {"ok": True, "service": "purchasing"}


@router.get("/vendors")
def list_vendors(db: Session = Depends(get_db)):
    return service.list_vendors(db)


@router.post("/vendors", status_code=201)
def create_vendor(payload: VendorIn, db: Session = Depends(get_db)):
    return service.create_vendor(db, **payload.model_dump())


@router.get("/purchase-orders")
def list_purchase_orders(status: str | None = None, db: Session = Depends(get_db)):
    return [po.to_dict() for po in service.list_purchase_orders(db, status=status)]


@router.post("/purchase-orders", status_code=201)
def create_purchase_order(payload: PurchaseOrderIn, db: Session = Depends(get_db)):
    return service.create_purchase_order(
        db,
        vendor_id=payload.vendor_id,
        lines=_lines(payload.lines),
        order_date=payload.order_date,
        expected_delivery_date=payload.expected_delivery_date,
        requires_approval=payload.requires_approval,
    ).to_dict()


@router.get("/purchase-orders/{po_id}")
def get_purchase_order(po_id: str, db: Session = Depends(get_db)):
    return service.get_purchase_order(db, po_id).to_dict()


@router.patch("/purchase-orders/{po_id}")
def update_purchase_order(po_id: str, payload: PurchaseOrderPatch, db: Session = Depends(get_db)):
    return service.update_purchase_order(
        db, po_id, lines=_lines(payload.lines), expected_delivery_date=payload.expected_delivery_date
    ).to_dict()


@router.post("/purchase-orders/{po_id}/status")
def set_status(po_id: str, payload: StatusIn, db: Session = Depends(get_db)):
    return service.set_status(db, po_id, payload.status).to_dict()


@router.post("/purchase-orders/{po_id}/approve")
def approve(po_id: str, db: Session = Depends(get_db)):
    return service.approve(db, po_id).to_dict()


@router.post("/purchase-orders/{po_id}/reject")
def reject(po_id: str, db: Session = Depends(get_db)):
    return service.reject(db, po_id).to_dict()


@router.post("/purchase-orders/{po_id}/receive")
def receive(po_id: str, db: Session = Depends(get_db)):
    return service.receive(db, po_id).to_dict()
