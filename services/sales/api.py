from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from services.sales import service

router = APIRouter(prefix="/sales", tags=["sales"])


# ---- Schemas ----
class InvoiceLineIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class InvoiceIn(BaseModel):
    lines: list[InvoiceLineIn] = Field(..., min_length=1)
    customer_name: str | None = Field(default=None, max_length=256)
    status: str = "pending"  # pending|paid|overdue
    invoice_date: date | None = None
    discount: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class StatusIn(BaseModel):
    status: str


class RefundLineIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0)


class RefundIn(BaseModel):
    lines: list[RefundLineIn] = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


@router.get("/health")
def health():
    return {"ok": True, "service": "sales"}


@router.get("/invoices")
def list_invoices(status: str | None = None, db: Session = Depends(get_db)):
    return [i.to_dict() for i in service.list_invoices(db, status=status)]


@router.post("/invoices", status_code=201)
def create_invoice(payload: InvoiceIn, db: Session = Depends(get_db)):
    return service.create_invoice(
        db,
        lines=[(ln.product_id, ln.quantity) for ln in payload.lines],
        customer_name=payload.customer_name,
        status=payload.status,
        invoice_date=payload.invoice_date,
        discount=payload.discount,
        tax_rate=payload.tax_rate,
    ).to_dict()


@router.get("/invoices/refundable")
def refundable(db: Session = Depends(get_db)):
    return [i.to_dict() for i in service.refundable_invoices(db)]


@router.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str, db: Session = Depends(get_db)):
    return service.get_invoice(db, invoice_id).to_dict()


@router.post("/invoices/{invoice_id}/status")
def set_status(invoice_id: str, payload: StatusIn, db: Session = Depends(get_db)):
    return service.set_invoice_status(db, invoice_id, payload.status).to_dict()


@router.post("/invoices/{invoice_id}/refunds", status_code=201)
def refund(invoice_id: str, payload: RefundIn, db: Session = Depends(get_db)):
    return service.process_refund(
        db, invoice_id, [(ln.product_id, ln.quantity) for ln in payload.lines], payload.reason
    ).to_dict()


@router.get("/refunds")
def list_refunds(invoice_id: str | None = None, db: Session = Depends(get_db)):
    return [r.to_dict() for r in service.list_refunds(db, invoice_id=invoice_id)]
