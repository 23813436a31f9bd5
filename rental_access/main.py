"""Main application entry point."""
import logging

import structlog
import uvicorn
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rental_access.config import settings

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Configure standard logging
logging.basicConfig(
    format="%(message)s",
    level=getattr(logging, settings.log_level.upper()),
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Rental lifecycle and secure streaming access",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler = AsyncIOScheduler(timezone="UTC")


@app.on_event("startup")
async def startup_event() -> None:
    """Startup event handler."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    from rental_access.api.dependencies import get_reconciler, get_recovery_service
    from rental_access.infrastructure.database import init_db
    from rental_access.scheduler.jobs import setup_scheduler

    logger.info("Initializing PostgreSQL database")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    await get_recovery_service().run()

    if settings.scheduler_enabled:
        setup_scheduler(scheduler, get_reconciler())
        scheduler.start()
        logger.info(
            f"Expiry sweep scheduled every {settings.expiry_sweep_interval_seconds}s"
        )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Shutdown event handler."""
    logger.info("Shutting down")

    from rental_access.api.dependencies import close_clients
    from rental_access.infrastructure.database import close_db

    if scheduler.running:
        scheduler.shutdown(wait=False)

    await close_clients()
    logger.info("Closing database connections")
    await close_db()


# Import and include routers
from rental_access.api import monitoring, routes

# Include routers
app.include_router(routes.router)
app.include_router(monitoring.router)


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


if __name__ == "__main__":
    uvicorn.run(app, host=settings.app_host, port=settings.app_port)
