from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.models.mrp import ProductionOrderStatus
from app.db.session import get_db
from services.mes import service

router = APIRouter(prefix="/mes", tags=["mes"])


# ---- Schemas ----
class ProductionOrderIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    scheduled_start_date: date
    scheduled_end_date: date
    notes: str | None = None


class ProductionOrderPatch(BaseModel):
    product_id: str | None = None
    quantity: int | None = Field(default=None, ge=1)
    scheduled_start_date: date | None = None
    scheduled_end_date: date | None = None
    notes: str | None = None


class TransitionIn(BaseModel):
    status: ProductionOrderStatus


@router.get("/health")
def health():
    return {"ok": True, "service": "mes"}


@router.get("/production-orders")
def list_production_orders(status: ProductionOrderStatus | None = None, limit: int = 500, db: Session = Depends(get_db)):
    return [o.to_dict() for o in service.list_orders(db, status=status.value if status else None, limit=limit)]


@router.post("/production-orders", status_code=201)
def create_production_order(payload: ProductionOrderIn, db: Session = Depends(get_db)):
    return service.create_order(db, **payload.model_dump()).to_dict()


@router.get("/production-orders/{order_id}")
def get_production_order(order_id: str, db: Session = Depends(get_db)):
    return service.get_order(db, order_id).to_dict()


@router.patch("/production-orders/{order_id}")
def update_production_order(order_id: str, payload: ProductionOrderPatch, db: Session = Depends(get_db)):
    return service.update_order(db, order_id, **payload.model_dump(exclude_unset=True)).to_dict()


@router.post("/production-orders/{order_id}/status")
def transition_production_order(order_id: str, payload: TransitionIn, db: Session = Depends(get_db)):
    return service.transition(db, order_id, payload.status.value).to_dict()


@router.post("/production-orders/{order_id}/start")
def start(order_id: str, db: Session = Depends(get_db)):
    return service.transition(db, order_id, "in-progress").to_dict()


@router.post("/production-orders/{order_id}/hold")
def hold(order_id: str, db: Session = Depends(get_db)):
    return service.transition(db, order_id, "on-hold").to_dict()


@router.post("/production-orders/{order_id}/cancel")
def cancel(order_id: str, db: Session = Depends(get_db)):
    return service.transition(db, order_id, "cancelled").to_dict()


@router.post("/production-orders/{order_id}/complete")
def complete(order_id: str, db: Session = Depends(get_db)):
    return service.complete_order(db, order_id).to_dict()
