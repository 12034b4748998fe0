from __future__ import annotations
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.core.context import set_actor, set_request_id

class ActorMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        set_actor(request.headers.get("X-Actor") or request.headers.get("x-actor"))
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        set_request_id(request_id)
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
