# backend/stagebook/main.py
import asyncio
import logging
import os
import sys
import traceback

# Add the backend directory to Python path for imports
BACKEND_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from stagebook import config
from stagebook.auth import require_admin, require_api_key
from stagebook.db import engine
from stagebook.jobs import sweep_forever
from stagebook.models import Base
from stagebook.responses import fail
from stagebook.routes.admin import router as admin_router
from stagebook.routes.artist import router as artist_router
from stagebook.routes.auth import router as auth_router
from stagebook.routes.booking import router as bookings_router, webhook_router
from stagebook.routes.calendar_blocks import router as calendar_router
from stagebook.routes.planner import router as planner_router
from stagebook.routes.services import router as services_router
from stagebook.routes.user import router as user_router

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Stagebook - Backend", debug=config.DEBUG)

api_key_gate = [Depends(require_api_key)]
app.include_router(auth_router, dependencies=api_key_gate)
app.include_router(services_router, dependencies=api_key_gate)
app.include_router(bookings_router, dependencies=api_key_gate)
app.include_router(webhook_router)
app.include_router(artist_router, dependencies=api_key_gate)
app.include_router(calendar_router, dependencies=api_key_gate)
app.include_router(planner_router, dependencies=api_key_gate)
app.include_router(user_router, dependencies=api_key_gate)
app.include_router(admin_router, dependencies=[*api_key_gate, Depends(require_admin)])


@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    message = getattr(exc, "message", None) or str(exc.detail)
    body = fail(message, jsonable_encoder(getattr(exc, "data", None)))
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg')}" if where else (first.get("msg") or "Invalid request")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=fail(message, errors))


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    body = fail("Internal server error")
    if not config.is_production():
        body["error"] = str(exc)
        body["stack"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.on_event("startup")
async def startup_create_tables():
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception:
        # alembic owns the schema in deployed environments
        logger.exception("create_all at startup failed")

    if config.SWEEP_ENABLED:
        app.state.sweep_task = asyncio.create_task(sweep_forever())
        logger.info("periodic sweep started (every %ss)", config.SWEEP_INTERVAL_SECONDS)


@app.on_event("shutdown")
async def stop_sweep():
    task = getattr(app.state, "sweep_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
