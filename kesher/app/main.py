"""
Kesher - Multi-Account Messaging Gateway

FastAPI application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from kesher import __version__
from kesher.app.api import instances_router, messages_router, webhooks_router
from kesher.app.dependencies import build_credential_store, build_registry, get_settings
from kesher.config.schemas import AppSettings
from kesher.credentials import RedisCredentialStore
from kesher.registry import InstanceRegistry

logger = logging.getLogger(__name__)


def configure_logging(settings: AppSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: AppSettings | None = None,
    registry: InstanceRegistry | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to the environment)
        registry: Pre-built registry (tests); built from settings otherwise
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Builds the registry, restores persisted instances on startup and
        releases everything on shutdown.
        """
        logger.info("Starting Kesher services...")
        credential_store = None
        active = registry
        if active is None:
            credential_store = build_credential_store(settings)
            active = build_registry(settings, credential_store=credential_store)
        app.state.registry = active

        try:
            result = await active.load_existing()
            logger.info(f"Kesher services initialized ({result.data.get('loaded', 0)} instances)")
        except Exception as e:
            logger.error(f"Failed to initialize services: {e}", exc_info=True)
            raise

        yield

        logger.info("Shutting down Kesher services...")
        try:
            await active.shutdown()
            if isinstance(credential_store, RedisCredentialStore):
                await credential_store.close()
            logger.info("Kesher services shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)

    app = FastAPI(
        title="Kesher",
        description="Multi-account messaging gateway: lifecycle control, sends and webhook relay",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.include_router(instances_router, prefix="/api/v1")
    app.include_router(messages_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint with service info."""
        return {
            "service": settings.service_name,
            "version": __version__,
            "status": "running",
        }

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, Any]:
        """Health check endpoint with instance counts."""
        active: InstanceRegistry | None = getattr(app.state, "registry", None)
        if active is None:
            return {"status": "starting"}
        return {
            "status": "healthy",
            "families": active.families.families,
            "instances": active.stats().data,
        }

    return app


settings = get_settings()
configure_logging(settings)

app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kesher.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
