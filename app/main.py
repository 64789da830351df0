"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.router import api_router
from app.config import settings
from app.core.database import close_db, init_db
from app.core.logging import setup_logging
from app.core.redis import close_redis, get_runner_status_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    setup_logging()

    logger.info(
        "Starting GeoScore pipeline API",
        extra={"environment": settings.environment, "version": settings.app_version},
    )

    if settings.environment == "development":
        await init_db()
        logger.info("Development database initialized")

    yield

    logger.info("Shutting down GeoScore pipeline API")
    await close_redis()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Dependency-aware job queue and stage pipeline that turns crawled brand "
            "pages into GeoScore visibility reports"
        ),
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        cast(Any, CORSMiddleware),
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get(
        "/health",
        summary="Health check",
        description="Return service health status and backend version information.",
    )
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    @app.get(
        "/health/runners",
        summary="Runner health check",
        description="Return the latest status snapshot published by each live job runner.",
    )
    async def runners_health_check() -> dict[str, Any]:
        """Runner health endpoint."""
        snapshots = await get_runner_status_store().list_snapshots()
        runners = sorted(snapshots, key=lambda snapshot: str(snapshot.get("runner_id", "")))
        unhealthy = sorted(
            {
                job_type
                for snapshot in runners
                for job_type, stage in (snapshot.get("stages") or {}).items()
                if stage.get("healthy") is False
            }
        )
        return {
            "status": "degraded" if unhealthy or not runners else "healthy",
            "version": settings.app_version,
            "runner_count": len(runners),
            "active_jobs": sum(len(snapshot.get("active_executions") or []) for snapshot in runners),
            "unhealthy_stages": unhealthy,
            "runners": runners,
        }

    return app


app = create_app()
