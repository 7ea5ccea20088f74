"""
FastAPI application with database pool and notifier lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import DatabasePoolManager
from app.features.coordination.api.router import router as coordination_router
from app.features.coordination.services.coordination_service import CoordinationService
from app.features.coordination.services.notifier import NotificationDispatcher, build_notifier
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.middleware import RequestContextMiddleware
from app.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    db = DatabasePoolManager()
    try:
        await db.initialize()
    except Exception as e:
        logger.error("Failed to initialize database pool", error=str(e))
        await db.close()
        raise

    dispatcher = NotificationDispatcher(build_notifier())
    app.state.db = db
    app.state.coordination = CoordinationService(db, dispatcher)
    logger.info("All services initialized successfully")

    yield

    logger.info("Application shutting down")
    shutdown_errors = []

    # Drain notifications first; they no longer need the pool
    try:
        await dispatcher.close()
    except Exception as e:
        logger.error("Error closing notifier", error=str(e))
        shutdown_errors.append(f"Notifier: {e}")

    try:
        await db.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Meeting Coordination",
    description="Group meeting proposals with single-use email response links",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(coordination_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
