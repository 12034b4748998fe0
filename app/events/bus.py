from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.core.context import get_request_id
from app.db.models.common import utcnow
from app.events.outbox import OutboxEvent

log = logging.getLogger(__name__)


def publish(
    db: Session,
    topic: str,
    payload: dict,
    *,
    available_at: datetime | None = None,
    correlation_id: str | None = None,
) -> OutboxEvent:
    """Publish an event by writing to the transactional outbox.

    The row joins the caller's transaction; nothing is committed here.
    """
    evt = OutboxEvent(
        topic=topic,
        payload=payload or {},
        correlation_id=correlation_id or get_request_id(),
        available_at=available_at or utcnow(),
        delivered=False,
        attempt_count=0,
    )
    db.add(evt)
    db.flush()
    log.debug("queued event %s (%s)", topic, evt.id)
    return evt
