"""
SlotBook API application.
Availability search and reliable booking on top of Google Calendar.
"""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from slotbook.config import settings
from slotbook.db.pool import db_pool
from slotbook.infrastructure.observability.logging import (
    bind_log_context,
    clear_log_context,
    get_logger,
    log_request,
    setup_logging,
)
from slotbook.routes import health, scheduling

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and close it on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        await db_pool.initialize()
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        raise

    logger.info("All services initialized successfully", services=["database_pool"])

    yield

    logger.info("Application shutting down")
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        raise
    logger.info("All services closed successfully")


app = FastAPI(
    title="SlotBook",
    description="Availability search and reliable booking for Google Calendar",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(scheduling.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing and a per-request id."""
    clear_log_context()
    bind_log_context(request_id=request.headers.get("x-request-id") or uuid.uuid4().hex)

    start_time = time.time()
    try:
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        log_request(request.method, request.url.path, response.status_code, round(process_time, 2))
        return response
    finally:
        clear_log_context()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
