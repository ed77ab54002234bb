"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from testwarden.config.logging import setup_logging
from testwarden.config.settings import get_settings
from testwarden.exceptions import PersistenceError, ValidationError
from testwarden.storage.database import get_engine, init_db
from testwarden.web.health import check_health
from testwarden.web.middleware import RequestIDMiddleware
from testwarden.web.routes.reports import router as reports_router
from testwarden.web.routes.rules import router as rules_router
from testwarden.web.routes.tests import router as tests_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    if get_settings().auto_create_tables:
        await init_db()
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug, sql_echo=settings.debug)

    app = FastAPI(
        title="testwarden",
        description="Test health tracking and conditional test skipping for CI runners",
        version="0.1.0",
        lifespan=_lifespan,
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info("request_rejected", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("request_persistence_failed", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    # Middleware (last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.get("/api/health")
    async def health_check(engine: AsyncEngine = Depends(get_engine)) -> dict[str, object]:
        return await check_health(engine)

    for router in (reports_router, tests_router, rules_router):
        app.include_router(router)

    logger.info("app_created")
    return app
