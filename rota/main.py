from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rota.core.logging import configure_logging
from rota.services.outbox_worker import start_outbox_worker_task
from rota import models  # noqa: F401
from rota.routers.approvals import router as approvals_router
from rota.routers.auth import router as auth_router
from rota.routers.invites import router as invites_router
from rota.routers.outbox import router as outbox_router
from rota.routers.shifts import allocations_router, router as shifts_router
from rota.routers.timekeeping import router as timekeeping_router
from rota.routers.timesheets import router as timesheets_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    task = start_outbox_worker_task()
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


app = FastAPI(
    title="Rota",
    lifespan=lifespan,
)


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception", extra={"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(shifts_router)
app.include_router(allocations_router)
app.include_router(invites_router)
app.include_router(timekeeping_router)
app.include_router(approvals_router)
app.include_router(timesheets_router)
app.include_router(outbox_router)


@app.get("/")
def root():
    return {"status": "Rota running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
