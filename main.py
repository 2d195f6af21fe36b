# main.py (full, lifespan-based)
from __future__ import annotations

import asyncio, logging, contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from tortoise import Tortoise

from routers import (
    states, boards, consumers,
    tariffs, meters,
    billing, my_bills, my_meters,
    users,
    retention, admin_tasks, audit_logs,
)

from scheduler import Scheduler
from services import config
from services.errors import ErrorKind, ServiceError, map_db_error
from services.retention import RetentionSweeper

from tortoise.exceptions import BaseORMException

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("uvicorn")

TORTOISE_ORM = {
    "connections": {config.DB_CONNECTION: config.DATABASE_URL},
    "apps": {"models": {"models": ["models"], "default_connection": config.DB_CONNECTION}},
    "use_tz": True,
    "timezone": "UTC",
}

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}

# ----- scheduled jobs -----
async def _job_retention_cleanup():
    summary = await RetentionSweeper(config.DB_CONNECTION).run_cleanup()
    deleted = sum(r["deleted_count"] for r in summary["results"])
    failed = [str(r["policy_id"]) for r in summary["results"] if r.get("error")]
    logger.info(f"[retention] {len(summary['results'])} policies, {deleted} rows deleted")
    if failed:
        logger.warning(f"[retention] failed policies: {', '.join(failed)}")

# ----- lifespan -----
@asynccontextmanager
async def lifespan(app: FastAPI):
    # 1) DB init
    await Tortoise.init(config=TORTOISE_ORM)
    await Tortoise.generate_schemas()

    # 2) Scheduler
    sched = Scheduler()
    app.state.scheduler = sched
    if config.RETENTION_SWEEP_SECONDS > 0:
        sched.every(config.RETENTION_SWEEP_SECONDS, _job_retention_cleanup)

    sched_task = asyncio.create_task(sched.run_forever())
    try:
        yield
    finally:
        if not sched_task.done():
            sched_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sched_task
        await Tortoise.close_connections()

# ----- app & routers -----
app = FastAPI(lifespan=lifespan, title="GridLedger Admin API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "X-Total-Count"],
)

# ----- error mapping -----
def _error_response(err: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_KIND.get(err.kind, 500),
        content={"kind": err.kind.value, "detail": err.message},
    )

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.kind is ErrorKind.INTERNAL:
        logger.error("%s %s -> internal error: %s", request.method, request.url.path, exc)
    return _error_response(exc)

@app.exception_handler(BaseORMException)
async def orm_error_handler(request: Request, exc: BaseORMException):
    err = map_db_error(exc)
    if err.kind is ErrorKind.INTERNAL:
        logger.exception("%s %s -> unhandled ORM error", request.method, request.url.path, exc_info=exc)
    return _error_response(err)

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s -> unhandled error", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"kind": ErrorKind.INTERNAL.value, "detail": "Internal server error"})

# Core routers
app.include_router(states.router)
app.include_router(boards.router)
app.include_router(consumers.router)
app.include_router(users.router)

app.include_router(tariffs.router)
app.include_router(meters.router)

app.include_router(billing.router)
app.include_router(my_bills.router)
app.include_router(my_meters.router)

app.include_router(retention.router)
app.include_router(admin_tasks.router)
app.include_router(audit_logs.router)

for route in app.routes:
    if isinstance(route, APIRoute):
        logger.debug("%s -> %s", list(route.methods), route.path)
