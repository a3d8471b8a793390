"""
FastAPI application entrypoint for the Spotify credential service.
"""

from __future__ import annotations

from fastapi import FastAPI

from tokenkeeper.api.routes import router as api_router
from tokenkeeper.core.config import get_settings
from tokenkeeper.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Tokenkeeper",
        version="0.1.0",
        description="Spotify authorization and access-token lifecycle API.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
