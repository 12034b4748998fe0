from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.models.activity import ActivityLog
from app.db.session import get_db

router = APIRouter(prefix="/admin/activity", tags=["admin_activity"])


@router.get("")
def list_activity(
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor: str | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
):
    q = db.query(ActivityLog)
    if entity_type:
        q = q.filter(ActivityLog.entity_type == entity_type)
    if entity_id:
        q = q.filter(ActivityLog.entity_id == entity_id)
    if actor:
        q = q.filter(ActivityLog.actor == actor)
    rows = q.order_by(ActivityLog.created_at.desc()).limit(min(limit, 1000)).all()
    return [
        {
            "id": r.id,
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "actor": r.actor,
            "action": r.action,
            "details": r.details,
            "entity_type": r.entity_type,
            "entity_id": r.entity_id,
            "request_id": r.request_id,
        }
        for r in rows
    ]
