from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import DomainError
from app.core.logging import configure_logging
from app.core.middleware import ActorMiddleware
from app.db.base import Base
from app.db.session import engine

# Register models
from app.db import models  # noqa: F401

from services.inventory.api import router as inventory_router
from services.mrp.api import router as mrp_router
from services.mes.api import router as mes_router
from services.purchasing.api import router as purchasing_router
from services.sales.api import router as sales_router
from services.admin.events_api import router as events_admin_router
from services.admin.activity_api import router as activity_router

configure_logging()
log = logging.getLogger(__name__)

settings = get_settings()
app = FastAPI(title=settings.app_title)
app.add_middleware(ActorMiddleware)

_background: list[asyncio.Task] = []


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    log.warning("%s %s rejected (%s): %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation (migrations are available for real upgrades)
    Base.metadata.create_all(bind=engine)

    if settings.event_dispatch_enabled:
        from app.events.dispatcher import run_dispatcher_forever

        _background.append(asyncio.create_task(run_dispatcher_forever(poll_interval_seconds=settings.event_poll_seconds)))
    log.info("%s started (database %s)", settings.app_title, engine.url.render_as_string(hide_password=True))


@app.on_event("shutdown")
async def _shutdown():
    for task in _background:
        task.cancel()
    _background.clear()


app.include_router(inventory_router)
app.include_router(mrp_router)
app.include_router(mes_router)
app.include_router(purchasing_router)
app.include_router(sales_router)
app.include_router(events_admin_router)
app.include_router(activity_router)


@app.get("/health")
def health():
    return {"ok": True}
