"""
FastAPI application for the HTTP channel.
"""

from typing import TYPE_CHECKING

from fastapi import FastAPI

from lobster import __version__
from lobster.api.routes import health_router, messages_router
from lobster.config import get_settings
from lobster.observability.tracing import instrument_fastapi

if TYPE_CHECKING:
    from lobster.adapters.http_channel import HttpInputAdapter


def create_app(adapter: "HttpInputAdapter") -> FastAPI:
    """
    Create and configure the FastAPI application.

    The application is served in-process by the adapter, which it reaches
    through ``app.state.adapter``.

    Args:
        adapter: The input adapter receiving submitted messages.

    Returns:
        FastAPI: The configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Lobster Relay",
        description="Relays chat messages to an agent and delivers its replies",
        version=__version__,
        docs_url="/docs",
        redoc_url=None,
    )
    app.state.adapter = adapter

    app.include_router(health_router)
    app.include_router(messages_router)

    if settings.otel_enabled:
        instrument_fastapi(app)

    return app
