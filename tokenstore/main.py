"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Final

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tokenstore.api.v1 import router as api_v1_router
from tokenstore.core.config import settings
from tokenstore.core.errors import (
    OAuthError,
    http_error_handler,
    oauth_error_handler,
    validation_error_handler,
)
from tokenstore.core.logging import setup_logging
from tokenstore.db.postgres import close_database, engine, init_database

logger = logging.getLogger(__name__)

HEALTH_STATUS_HEALTHY: Final[str] = "healthy"
HEALTH_STATUS_UNHEALTHY: Final[str] = "unhealthy"
HEALTH_STATUS_CONNECTED: Final[str] = "connected"
HEALTH_STATUS_ERROR: Final[str] = "error"


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncGenerator[None]:
    """Application lifecycle manager."""
    setup_logging()
    try:
        await init_database()
        logger.info("%s %s started", settings.PROJECT_NAME, settings.PROJECT_VERSION)

        yield

    finally:
        await close_database()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.PROJECT_DESCRIPTION,
    version=settings.PROJECT_VERSION,
    lifespan=lifespan,
)

app.add_exception_handler(
    HTTPException,
    http_error_handler,  # type: ignore
)
app.add_exception_handler(
    RequestValidationError,
    validation_error_handler,  # type: ignore
)
app.add_exception_handler(
    OAuthError,
    oauth_error_handler,  # type: ignore
)


@app.middleware("http")
async def add_api_version_header(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Add API version for tracking."""
    response = await call_next(request)
    response.headers["X-API-Version"] = settings.PROJECT_VERSION
    return response


app.include_router(api_v1_router, prefix="/api")


@app.get("/health")
async def health_check() -> dict[str, str | dict[str, str]]:
    """System health check endpoint."""
    db_healthy = True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("Health check failed: %s", str(e))
        db_healthy = False

    return {
        "status": HEALTH_STATUS_HEALTHY if db_healthy else HEALTH_STATUS_UNHEALTHY,
        "checks": {
            "database": HEALTH_STATUS_CONNECTED if db_healthy else HEALTH_STATUS_ERROR,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    }


@app.get("/")
async def read_root() -> dict[str, str]:
    """Root endpoint with API info."""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.PROJECT_VERSION,
        "docs_url": "/docs",
    }
