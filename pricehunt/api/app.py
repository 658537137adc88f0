"""FastAPI application entry point for PriceHunt."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pricehunt.api.routes import get_core, router
from pricehunt.config.settings import APIConfig
from pricehunt.orchestrator.factory import Core
from pricehunt.telemetry.log_setup import configure_logging

VERSION = "1.0.0"


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    core = get_core(app)
    configure_logging(core.config.log_level)
    await core.startup()
    try:
        yield
    finally:
        await core.shutdown()


def create_app(core: Core | None = None, api_config: APIConfig | None = None) -> FastAPI:
    """Factory function for creating the FastAPI application.

    Without ``core`` the components are built from the environment on
    first use.
    """
    api_config = api_config or APIConfig()

    app = FastAPI(
        title="PriceHunt",
        description="Resilient product extraction core",
        version=VERSION,
        lifespan=_lifespan,
    )
    app.state.core = core

    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_config.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "pricehunt", "version": VERSION}

    return app


app = create_app()
