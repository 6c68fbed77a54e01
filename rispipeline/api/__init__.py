"""RIS pipeline REST API — FastAPI application factory."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rispipeline.api.deps import (
    dispose_engine,
    get_collection_scheduler,
    get_webhook_processor,
    init_session_factory,
)
from rispipeline.api.errors import register_error_handlers
from rispipeline.api.middleware.request_id import RequestIDMiddleware
from rispipeline.api.routers import collection, libraries, queue, scores, webhooks
from rispipeline.core.logging import setup_logging
from rispipeline.scheduler import create_scheduler


def _scheduler_enabled() -> bool:
    return os.environ.get("RIS_SCHEDULER_ENABLED", "true").lower() not in ("0", "false", "no")


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: init DB and background loops. Shutdown: stop loops, dispose engine."""
    factory = init_session_factory()
    scheduler = None
    if _scheduler_enabled():
        scheduler = create_scheduler(
            factory,
            processor=get_webhook_processor(),
            collection_scheduler=get_collection_scheduler(),
        )
        await scheduler.start()
    yield
    if scheduler is not None:
        await scheduler.stop()
    await dispose_engine()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    setup_logging()

    app = FastAPI(
        title="RIS Pipeline",
        docs_url="/api/v1/docs",
        openapi_url="/api/v1/openapi.json",
        lifespan=_lifespan,
    )

    register_error_handlers(app)

    cors_origins = os.environ.get("RIS_CORS_ORIGINS", "http://localhost:3000")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health", tags=["ops"])
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["webhooks"])
    app.include_router(collection.router, prefix="/api/v1/ris", tags=["collection"])
    app.include_router(queue.router, prefix="/api/v1/ris", tags=["queue"])
    app.include_router(scores.router, prefix="/api/v1/ris", tags=["scores"])
    app.include_router(libraries.router, prefix="/api/v1/ris", tags=["libraries"])

    return app
