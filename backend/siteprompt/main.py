"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Mapping

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from siteprompt.api.routes import crawl, generate
from siteprompt.config import Settings, get_settings
from siteprompt.logging_config import configure_logging
from siteprompt.services.credentials import CredentialPool
from siteprompt.services.generation import Generator

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use instead of the cached environment settings
        environ: Where to read API keys from (defaults to ``os.environ``)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        configure_logging(settings.log_level, json_output=settings.log_json)
        pool = CredentialPool.from_settings(settings, environ)
        app.state.settings = settings
        app.state.credential_pool = pool
        app.state.generator = Generator(pool, settings)
        logger.info(f"{settings.app_name} started with {len(pool)} API keys")
        yield
        # Shutdown
        await app.state.generator.close()

    app = FastAPI(
        title=settings.app_name,
        description="Crawl websites into LLM-ready text and generate content from it",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(crawl.router, prefix="/api", tags=["crawl"])
    app.include_router(generate.router, prefix="/api", tags=["generate"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": "1.0.0",
            "docs": "/docs",
        }

    return app


app = create_app()
