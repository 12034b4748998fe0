from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db, transaction
from app.events import bus
from app.events.outbox import OutboxEvent
from app.events.subscriptions import EventSubscription


router = APIRouter(prefix="/admin/events", tags=["admin_events"])


class SubscriptionIn(BaseModel):
    name: str = Field(default="subscription", max_length=128)
    topic_pattern: str = Field(..., min_length=1, max_length=128)
    target_url: str = Field(..., min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True


class ToggleIn(BaseModel):
    is_active: bool | None = None


class PublishIn(BaseModel):
    topic: str = Field(..., min_length=1, max_length=128)
    payload: dict = Field(default_factory=dict)


def _sub_dict(s: EventSubscription) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "topic_pattern": s.topic_pattern,
        "target_url": s.target_url,
        "headers": s.headers or {},
        "is_active": bool(s.is_active),
        "failure_count": int(s.failure_count or 0),
        "last_error": s.last_error,
        "last_delivered_at": s.last_delivered_at.isoformat() if s.last_delivered_at else None,
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }


@router.get("/subscriptions")
def list_subscriptions(db: Session = Depends(get_db)):
    subs = db.query(EventSubscription).order_by(EventSubscription.created_at.desc()).all()
    return [_sub_dict(s) for s in subs]


@router.post("/subscriptions", status_code=201)
def create_subscription(payload: SubscriptionIn, db: Session = Depends(get_db)):
    s = EventSubscription(
        name=payload.name or "subscription",
        topic_pattern=payload.topic_pattern,
        target_url=payload.target_url,
        headers=dict(payload.headers),
        is_active=payload.is_active,
        last_error=None,
        failure_count=0,
        last_delivered_at=None,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return {"ok": True, "id": s.id}


@router.post("/subscriptions/{sub_id}/toggle")
def toggle_subscription(sub_id: str, payload: ToggleIn | None = None, db: Session = Depends(get_db)):
    s = db.query(EventSubscription).filter(EventSubscription.id == sub_id).first()
    if not s:
        raise HTTPException(404, "Unknown subscription")
    wanted = payload.is_active if payload is not None else None
    s.is_active = (not bool(s.is_active)) if wanted is None else wanted
    db.commit()
    return {"ok": True, "id": s.id, "is_active": bool(s.is_active)}


@router.delete("/subscriptions/{sub_id}")
def delete_subscription(sub_id: str, db: Session = Depends(get_db)):
    s = db.query(EventSubscription).filter(EventSubscription.id == sub_id).first()
    if not s:
        return {"ok": True, "deleted": False}
    db.delete(s)
    db.commit()
    return {"ok": True, "deleted": True}


@router.get("/outbox")
def list_outbox(topic: str | None = None, pending: bool = False, limit: int = 100, db: Session = Depends(get_db)):
    q = db.query(OutboxEvent)
    if topic:
        q = q.filter(OutboxEvent.topic == topic)
    if pending:
        q = q.filter(OutboxEvent.delivered == False)  # noqa: E712
    rows = q.order_by(OutboxEvent.created_at.desc()).limit(limit).all()
    return [
        {
            "id": e.id,
            "topic": e.topic,
            "payload": e.payload or {},
            "correlation_id": e.correlation_id,
            "delivered": bool(e.delivered),
            "attempt_count": int(e.attempt_count or 0),
            "last_error": e.last_error,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in rows
    ]


@router.post("/publish")
def publish_event(payload: PublishIn, db: Session = Depends(get_db)):
    """Test publish endpoint.

    Services publish by calling app.events.bus.publish(db, topic, payload)
    inside their own transaction boundary.
    """
    with transaction(db):
        evt = bus.publish(db, payload.topic, dict(payload.payload))
        out = {"ok": True, "event_id": evt.id, "topic": evt.topic}
    return out
