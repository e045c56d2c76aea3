from __future__ import annotations

import asyncio
import logging
import os

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from app.core.errors import DomainError
from app.core.logging import configure_logging
from app.db import session as db_session
from app.db.base import Base

# Register models
from app.db import models  # noqa: F401

from app.events.broadcast import hub
from services.admin.events_api import router as events_admin_router
from services.imports.api import router as imports_router
from services.organizations.api import operations_router, router as organizations_router
from services.references.api import router as references_router

EVENT_DISPATCHER_ENABLED = os.getenv("EVENT_DISPATCHER_ENABLED", "true").lower() in ("1", "true", "yes")
EVENT_DISPATCH_INTERVAL = float(os.getenv("EVENT_DISPATCH_INTERVAL", "1.0"))
CREATE_SCHEMA_ON_STARTUP = os.getenv("CREATE_SCHEMA_ON_STARTUP", "true").lower() in ("1", "true", "yes")

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Organization Registry")


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(IntegrityError)
async def _integrity_error(request: Request, exc: IntegrityError):
    logger.warning("%s %s violated a constraint: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=400, content={"detail": f"Constraint violation: {exc.orig}"})


@app.exception_handler(Exception)
async def _unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(organizations_router)
app.include_router(operations_router)
app.include_router(references_router)
app.include_router(imports_router)
app.include_router(events_admin_router)


@app.websocket("/ws")
async def notifications(websocket: WebSocket):
    await hub.serve(websocket)


@app.get("/health")
def health():
    return {"status": "ok", "websocketClients": hub.client_count}


@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation (alembic migrations cover real deployments)
    if CREATE_SCHEMA_ON_STARTUP:
        Base.metadata.create_all(bind=db_session.engine)

    if EVENT_DISPATCHER_ENABLED:
        from app.events.dispatcher import run_dispatcher_forever

        asyncio.create_task(run_dispatcher_forever(poll_interval_seconds=EVENT_DISPATCH_INTERVAL))
