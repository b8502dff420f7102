"""
FastAPI application entry point for the temple-events backend.

This module initializes the FastAPI application with:
- Application state (SnapshotCache, CalendarSource, ClaimRegistry,
  OperationProgressTracker, RetryPolicy)
- CORS middleware for frontend development
- Exception handlers for consistent error responses
- Logging configuration

Environment Variables:
    TEMPLE_EVENTS_ENV: Environment (production/development, default: development)
    TEMPLE_EVENTS_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    GRAPH_ACCESS_TOKEN / GRAPH_MAILBOX: Enable the Microsoft Graph calendar adapter

When the Graph adapter is not configured, development runs use an
in-memory calendar; production runs have no calendar source and refuse
approvals and reconciliation.
"""

import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.database import dispose_engine
from backend.src.services.calendar_source import (
    CalendarSource,
    GraphCalendarSource,
    InMemoryCalendarSource,
)
from backend.src.utils.claims import ClaimRegistry
from backend.src.utils.logging_config import get_logger, init_logging
from backend.src.utils.progress import OperationProgressTracker
from backend.src.utils.retry import RetryPolicy
from backend.src.utils.snapshot_cache import SnapshotCache


APP_VERSION = "1.0.0"


def build_calendar_source(settings: AppSettings) -> Optional[CalendarSource]:
    """
    Create the external calendar source for the process.

    Returns:
        GraphCalendarSource when Graph settings are present, an
        InMemoryCalendarSource in development, otherwise None
    """
    logger = get_logger("api")
    if settings.graph_configured:
        logger.info(f"Using Microsoft Graph calendar source for mailbox {settings.graph_mailbox}")
        return GraphCalendarSource(
            base_url=settings.graph_base_url,
            access_token=settings.graph_access_token,
            mailbox=settings.graph_mailbox,
        )
    if os.environ.get("TEMPLE_EVENTS_ENV", "development").lower() != "production":
        logger.warning("Graph is not configured; using an in-memory calendar source")
        return InMemoryCalendarSource()
    logger.warning("Graph is not configured; approvals and reconciliation are disabled")
    return None


def init_app_state(app: FastAPI, settings: Optional[AppSettings] = None) -> None:
    """
    Create process-wide singletons on application state.

    Args:
        app: FastAPI application instance
        settings: Settings to use (defaults to get_settings())
    """
    settings = settings or get_settings()
    app.state.snapshot_cache = SnapshotCache(
        ttl=timedelta(minutes=settings.cache_ttl_minutes),
        max_entries=settings.cache_max_entries,
    )
    app.state.calendar_source = build_calendar_source(settings)
    app.state.claims = ClaimRegistry()
    app.state.progress_tracker = OperationProgressTracker()
    app.state.retry_policy = RetryPolicy(
        max_attempts=settings.sync_page_retries,
        base_delay=settings.sync_backoff_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Startup: Initialize application state
    - Shutdown: Close the calendar client and database connections

    Args:
        app: FastAPI application instance

    Yields:
        Control to the application
    """
    # Startup
    logger = get_logger("api")
    logger.info("Starting temple-events backend application")

    logger.info("Initializing application state (cache, calendar source, claims, progress)")
    init_app_state(app)
    logger.info("Application state initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down temple-events backend application")
    source = getattr(app.state, "calendar_source", None)
    if isinstance(source, GraphCalendarSource):
        source.close()
    dispose_engine()


# Initialize logging before creating app
init_logging()

# Create FastAPI application
app = FastAPI(
    title="Temple Events API",
    description="Backend API for synagogue room and event reservations. "
                "Manages the reservation lifecycle, the location registry, "
                "and reconciliation with the external calendar.",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# Configure CORS middleware for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers


@app.exception_handler(ValidationError)
async def validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors raised outside request parsing.

    Args:
        request: HTTP request
        exc: Pydantic ValidationError

    Returns:
        JSON response with validation error details
    """
    logger = get_logger("api")
    logger.warning(
        "Validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": exc.errors(include_context=False),
        }
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """
    Handle SQLAlchemy database errors.

    Args:
        request: HTTP request
        exc: SQLAlchemy exception

    Returns:
        JSON response with database error message
    """
    logger = get_logger("db")
    logger.error(
        "Database error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Database Error",
            "message": "An error occurred while accessing the database. "
                       "Please try again later.",
        }
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Handle all other unhandled exceptions.

    Args:
        request: HTTP request
        exc: Unhandled exception

    Returns:
        JSON response with generic error message
    """
    logger = get_logger("api")
    logger.error(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error": str(exc),
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later.",
        }
    )


# Health check endpoint


@app.get("/health", tags=["Health"])
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Health status, application version and whether a calendar source is wired
    """
    source = getattr(request.app.state, "calendar_source", None)
    return {
        "status": "healthy",
        "service": "temple-events-backend",
        "version": APP_VERSION,
        "calendar_source": type(source).__name__ if source is not None else None,
    }


# API routers
from backend.src.api import events, locations, sync

app.include_router(events.router, prefix="/api")
app.include_router(locations.router, prefix="/api")
app.include_router(sync.router, prefix="/api")
