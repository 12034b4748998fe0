from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.activity import ActivityLog
from app.core.context import get_actor, get_request_id


def record_activity(
    db: Session,
    *,
    action: str,
    details: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
    actor: str | None = None,
) -> ActivityLog:
    """Append an activity entry to the caller's transaction.

    Keep payload JSON-serializable. The row is flushed, not committed.
    """
    safe_payload: dict[str, Any] = payload or {}
    try:
        json.dumps(safe_payload)
    except (TypeError, ValueError):
        safe_payload = {"_payload_error": "non_json", "_payload_repr": repr(payload)}

    entry = ActivityLog(
        actor=actor or get_actor(),
        action=action,
        details=details,
        entity_type=entity_type,
        entity_id=entity_id,
        request_id=get_request_id(),
        payload=safe_payload,
    )
    db.add(entry)
    db.flush()
    return entry
