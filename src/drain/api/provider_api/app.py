"""FastAPI application configuration (Provider API)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ...envs.provider_env import Settings
from .dependencies import get_provider_services, get_provider_settings
from .routers import admin, completions, pricing


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or get_provider_settings()
    services = get_provider_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await services.startup()
        try:
            yield
        finally:
            await services.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="DRAIN pay-per-request inference provider",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-DRAIN-Cost",
            "X-DRAIN-Total",
            "X-DRAIN-Remaining",
            "X-DRAIN-Channel",
            "X-DRAIN-Error",
            "X-DRAIN-Required",
            "X-DRAIN-Provided",
        ],
    )
    # Include routers
    app.include_router(completions.router, prefix="/v1")
    app.include_router(pricing.router, prefix="/v1")
    app.include_router(admin.router, prefix="/v1")

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "provider": services.ledger.provider_address,
            "version": settings.app_version,
        }

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
