"""
Automation flow execution engine.

FastAPI service that matches inbound events to tenant automation flows and
drives each execution one node at a time.
"""

# Performance: Install uvloop if available (Linux/macOS only)
try:
    import uvloop
    uvloop.install()
except ImportError:
    pass  # Windows - uvloop not available, use default asyncio

import logging
import traceback
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse, JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.exceptions import (
    AutomationError, DispatchError, ExecutionNotFoundError, FlowDefinitionError,
    FlowNotFoundError, NodeNotFoundError, TriggerConfigError,
)
from core.logging import configure_logging, get_logger
from middleware.auth import InternalAuthMiddleware
from routers import automation, internal
from services.scheduler import start_scheduler, shutdown_scheduler
from services.execution.recovery import get_watchdog, set_watchdog

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

# Suppress noisy loggers
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("apscheduler.scheduler").setLevel(logging.WARNING)
logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting automation engine", dispatch_mode=settings.dispatch_mode)

    await container.database().startup()

    # APScheduler holds delayed steps
    start_scheduler()

    coordinator = container.coordinator()
    watchdog = None
    if settings.watchdog_enabled:
        watchdog = container.watchdog()
        set_watchdog(watchdog)
        rearmed = await watchdog.scan_on_startup()
        if rearmed:
            logger.info("Re-armed sleeping executions on startup", count=len(rearmed))
        await watchdog.start()

    logger.info("Services started successfully", coordinator=type(coordinator).__name__)
    yield

    # Shutdown
    if watchdog:
        await watchdog.stop()
        set_watchdog(None)

    dispatcher = container.dispatcher()
    if hasattr(dispatcher, "shutdown"):
        await dispatcher.shutdown()

    shutdown_scheduler()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Automation Engine",
    version="1.0.0",
    description="Step-at-a-time execution of tenant automation flows",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            traceback.print_exc()
            logger.error(f"Unhandled exception: {type(e).__name__}: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": f"{type(e).__name__}: {str(e)}",
                    "detail": "Internal server error"
                }
            )


# Map engine errors to HTTP statuses
ERROR_STATUS = {
    ExecutionNotFoundError: status.HTTP_404_NOT_FOUND,
    FlowNotFoundError: status.HTTP_404_NOT_FOUND,
    NodeNotFoundError: status.HTTP_404_NOT_FOUND,
    FlowDefinitionError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    TriggerConfigError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DispatchError: status.HTTP_502_BAD_GATEWAY,
}


@app.exception_handler(AutomationError)
async def automation_error_handler(request: Request, exc: AutomationError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.warning("Request failed", path=request.url.path, error=str(exc), status_code=status_code)
    return ORJSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "error": "Validation failed",
                 "detail": exc.errors(include_url=False, include_context=False)},
    )


# Starlette wraps in reverse order: CORS runs first, then the internal
# token check, then the catch-all around the routers.
app.add_middleware(CatchAllExceptionsMiddleware)

# Internal callback authentication
app.add_middleware(InternalAuthMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(automation.router)
app.include_router(internal.router)


@app.get("/health")
async def health_check():
    """Detailed health check."""
    watchdog = get_watchdog()

    return {
        "status": "OK",
        "service": "automation-engine",
        "version": "1.0.0",
        "environment": "development" if settings.debug else "production",
        "dispatch_mode": settings.dispatch_mode,
        "watchdog": watchdog is not None and watchdog.running,
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting automation engine",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None,
        workers=1 if settings.debug else settings.workers
    )
