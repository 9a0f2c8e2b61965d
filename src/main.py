from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from src.application.dtos.common_dto import HealthResponse, RootResponse
from src.infrastructure.api.dependencies import build_container
from src.infrastructure.api.error_handlers import register_exception_handlers
from src.infrastructure.api.logging_config import setup_logging
from src.infrastructure.api.middlewares import add_default_middlewares
from src.infrastructure.api.routes.auth_routes import router as auth_router
from src.infrastructure.api.routes.image_routes import router as image_router
from src.infrastructure.api.routes.metadata_routes import extract_router
from src.infrastructure.api.routes.metadata_routes import router as metadata_router
from src.infrastructure.api.routes.search_routes import filters_router
from src.infrastructure.api.routes.search_routes import router as search_router
from src.infrastructure.api.routes.tag_routes import router as tag_router
from src.infrastructure.database.postgres_client import PostgresClient
from src.infrastructure.database.supabase_client import create_supabase_client

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 600.0


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    client = await create_supabase_client()
    pg_client = PostgresClient()
    if pg_client.enabled:
        await asyncio.to_thread(pg_client.ensure_schema)

    container = build_container(client, pg_client)
    app.state.container = container

    interval = float(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", str(DEFAULT_SWEEP_INTERVAL_SECONDS)))
    sweeper = asyncio.create_task(container.cache.run_sweeper(interval))
    mode = "postgres" if pg_client.enabled else ("supabase" if client else "in-memory")
    logger.info("LocalCDN backend started (persistence=%s)", mode, extra={"event": "lifecycle"})
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        container.cache.clear()
        pg_client.close()
        logger.info("LocalCDN backend stopped", extra={"event": "lifecycle"})


def create_app() -> FastAPI:
    app = FastAPI(
        title="LocalCDN Backend",
        version="0.1.0",
        description="""
        ## LocalCDN Backend API

        FastAPI backend for image hosting with versioned metadata, Clean
        Architecture, and Supabase (or local PostgreSQL) for auth, database, and storage.

        ### Features
        - **Image Management**: Upload, list, search, change visibility and delete images
        - **Metadata Versioning**: Every edit, strip and restore appends an immutable version
        - **Privacy**: Private images and their metadata are only visible to their owner
        - **Tags**: Tag aggregation over the images the caller can see

        ### Authentication
        Reads of public content work anonymously. Writes require a Bearer token
        in the Authorization header:
        ```
        Authorization: Bearer your-jwt-token
        ```

        ### Error Responses
        - **400 Bad Request**: Invalid parameters, filter, sort or metadata bundle
        - **401 Unauthorized**: Missing or invalid authentication token
        - **404 Not Found**: Resource does not exist or the caller has no access
        - **422 Unprocessable Entity**: Validation error in request body
        - **503 Service Unavailable**: Storage backend failure
        """,
        lifespan=lifespan,
    )
    add_default_middlewares(app)
    register_exception_handlers(app)

    @app.get(
        "/",
        response_model=RootResponse,
        summary="API Root",
        description="Get basic information about the LocalCDN API",
        response_description="API information including status and version",
    )
    def root():
        """Get API root information."""
        return {"status": "ok", "service": "localcdn-backend", "version": app.version}

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health Check",
        description="Check if the API service is running and healthy",
        response_description="Health status of the API service",
    )
    def health():
        """Check API health status."""
        return {"status": "healthy"}

    app.include_router(auth_router)
    app.include_router(image_router)
    app.include_router(metadata_router)
    app.include_router(extract_router)
    app.include_router(tag_router)
    app.include_router(search_router)
    app.include_router(filters_router)

    # bytes written by the local storage fallback
    local_dir = os.getenv("SUPABASE_STORAGE_LOCAL_DIR", ".local_storage")
    app.mount("/local-storage", StaticFiles(directory=local_dir, check_dir=False), name="local-storage")
    return app


app = create_app()
