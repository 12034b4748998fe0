from __future__ import annotations
import contextvars
import uuid

from app.core.config import get_settings

_actor: contextvars.ContextVar[str | None] = contextvars.ContextVar("actor", default=None)
_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("request_id", default=None)

def set_actor(actor: str | None) -> None:
    _actor.set(actor or None)

def get_actor() -> str:
    return _actor.get() or get_settings().default_actor

def set_request_id(request_id: str | None) -> None:
    _request_id.set(request_id or None)

def get_request_id() -> str | None:
    return _request_id.get()

def new_correlation_id() -> str:
    """Request id when serving HTTP, a fresh uuid otherwise."""
    return get_request_id() or str(uuid.uuid4())
