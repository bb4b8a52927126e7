"""
FastAPI Application Entry Point.

This is the main application file for the UrbanCleanse scheduling backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from urbancleanse.app.core.config import settings
from urbancleanse.app.api.v1.router import router as api_v1_router
from urbancleanse.app.core.dependencies import get_current_user
from urbancleanse.app.core.observability import ObservabilityMiddleware, configure_logging
from urbancleanse.app.core.redis_client import ping_redis
from urbancleanse.app.db.session import engine, Base, AsyncSessionLocal
from urbancleanse.app.services.catalog import seed_waste_types
from urbancleanse.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from fastapi import HTTPException

# Import models to ensure they are registered with Base
from urbancleanse.app.models.user import User
from urbancleanse.app.models.audit_log import AuditLog
from urbancleanse.app.models.bin import Bin
from urbancleanse.app.models.waste_type import WasteType
from urbancleanse.app.models.waste_request import WasteRequest
from urbancleanse.app.models.route import Route
from urbancleanse.app.models.route_bin_task import RouteBinTask
from urbancleanse.app.models.collection import Collection
from urbancleanse.app.models.alert import Alert
from urbancleanse.app.models.dlq import DeadLetterQueue
from urbancleanse.app.models.notification import Notification


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging.
    2. Creates database tables and seeds the waste type catalogue.
    """
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as db:
        await seed_waste_types(db)
    yield

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Waste collection scheduling: requests, worker assignment, routes and pickups",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to UrbanCleanse Scheduling API",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/auth/me", tags=["Authentication"])
async def whoami(current_user: dict = Depends(get_current_user)):
    """
    Echo the authenticated principal.

    Returns 401 if token is missing or invalid.
    """
    return {
        "authenticated_user": current_user,
    }
