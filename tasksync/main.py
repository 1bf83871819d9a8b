"""
Task Sync Backend - FastAPI Application

Multi-device task collection sync with conflict detection and
Web Push task reminders.
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
import logging

from tasksync.config import settings
from tasksync.errors import AuthError, ConflictError, StorageError, ValidationError
from tasksync.database import storage_manager
from tasksync.push.dispatcher import notification_dispatcher
from tasksync.push.routes import router as push_router
from tasksync.reminders.scheduler import ReminderScheduler
from tasksync.sync.routes import router as sync_router
from tasksync.sync.store import versioned_store


# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Task collection sync and reminder push service",
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None
)


# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# Include routers
app.include_router(sync_router, prefix=settings.api_prefix)
app.include_router(push_router, prefix=settings.api_prefix)


# ========== Error Handlers ==========

@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": str(exc) or "Unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "error": "Conflict",
            "serverVersion": exc.server_version,
            "message": "Server data is newer",
        },
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": str(exc)},
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("storage_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Storage failure"},
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": "0.1.0",
        "status": "operational",
        "environment": settings.environment
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "scheduler": reminder_scheduler.state.value,
    }


# ========== Lifecycle ==========

reminder_scheduler = ReminderScheduler(versioned_store, notification_dispatcher)


@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info(
        "application_starting",
        environment=settings.environment,
        debug=settings.debug
    )

    try:
        storage_manager.get_connection()
        logger.info("database_initialized", path=settings.database_path)
    except StorageError as e:
        logger.error("database_initialization_failed", error=str(e))
        # Don't crash the app, but log the error

    if settings.scheduler_enabled:
        reminder_scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("application_shutting_down")

    await reminder_scheduler.stop()

    storage_manager.close_connection()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tasksync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level
    )
