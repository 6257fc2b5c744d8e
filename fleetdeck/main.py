import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from fleetdeck.core.config import get_settings
from fleetdeck.core.logging import setup_logging
from fleetdeck.core.database import create_db_and_tables
from fleetdeck.core.errors import ErrorKind, FleetError
from fleetdeck.services.scheduler import SchedulerService

from fleetdeck.routers import apps, servers, audit, core

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.KEY_PARSE: 502,
    ErrorKind.CONNECT: 502,
    ErrorKind.COMMAND: 502,
    ErrorKind.REMOTE_EXECUTION: 502,
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manages application lifecycle events.

    On Startup:
    - Creates database tables if missing.
    - Starts the auto-stop and host refresh scheduler.

    On Shutdown:
    - Stops the scheduler.
    """
    logger.info(f"{settings.APP_NAME} starting up...")
    create_db_and_tables()
    SchedulerService.start()
    logger.info(f"{settings.APP_NAME} started successfully.")

    yield

    logger.info(f"{settings.APP_NAME} shutting down...")
    SchedulerService.shutdown()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan
)

@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError):
    """Maps fleet errors to JSON with a distinguishable ``kind``."""
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    return JSONResponse(status_code=500, content={"error": "Internal Server Error", "kind": "internal"})

app.include_router(core.router)
app.include_router(apps.router)
app.include_router(servers.router)
app.include_router(audit.router)
