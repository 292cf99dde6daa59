from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app import database
from app.core.logging import configure_logging
from app.services.audit_immutability import install_time_entry_edit_immutability
from app.services.errors import TimeTrackingError
from app.services.timer_sweeper import start_timer_sweep_task
from app.models import project, time_entry, time_entry_edit, time_tracking_settings  # noqa: F401
from app.routers.auth import router as auth_router
from app.routers.invoicing import router as invoicing_router
from app.routers.projects import router as projects_router
from app.routers.public import router as public_router
from app.routers.reports import router as reports_router
from app.routers.settings import router as settings_router
from app.routers.time_entries import router as time_entries_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    if install_time_entry_edit_immutability(database.engine):
        logger.info("Audit trail triggers installed")

    task = start_timer_sweep_task()
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                # sweeper crash during shutdown; already logged.
                pass


app = FastAPI(
    title="TimeLedger",
    lifespan=lifespan,
)


@app.exception_handler(TimeTrackingError)
async def time_tracking_error_handler(request: Request, exc: TimeTrackingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "reason": exc.reason},
    )


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(time_entries_router)
app.include_router(settings_router)
app.include_router(reports_router)
app.include_router(invoicing_router)
app.include_router(public_router)


@app.get("/")
def root():
    return {"status": "TimeLedger running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
