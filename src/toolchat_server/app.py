"""FastAPI application factory and lifespan management.

This module contains the create_app() factory function that creates and configures
the FastAPI application instance, including lifespan management for startup/shutdown
and router registration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from toolchat_server.config import ToolchatSettings
from toolchat_server.llm import CompletionClient
from toolchat_server.mcp import (
    ConnectionRegistry,
    ToolDirectory,
    ToolInvoker,
    TransportNegotiator,
)
from toolchat_server.routers import chat, health, models, servers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI application.

    The completion client and the connection registry are created once at
    startup and stored in app.state for reuse across all requests. Every
    enabled tool server from the settings is connected before the app starts
    serving; a server that fails to connect is left in the error state.

    Args:
        app: The FastAPI application instance.

    Yields:
        None: Control is yielded while the app is running.
    """
    settings: ToolchatSettings = app.state.settings

    app.state.completion_client = CompletionClient(timeout=settings.request_timeout)
    logger.info(f"Initialized completion client for {settings.api_endpoint}")

    registry = ConnectionRegistry(
        TransportNegotiator(connect_timeout=settings.connect_timeout)
    )
    app.state.registry = registry
    app.state.directory = ToolDirectory(registry)
    app.state.invoker = ToolInvoker(registry)

    await registry.connect_enabled(settings.tool_servers)

    yield

    # Shutdown: Clean up resources
    await registry.close_all()
    logger.info("Tool server sessions closed")
    await app.state.completion_client.close()
    logger.info("Completion client closed")


def create_app(settings: ToolchatSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    This factory function creates a FastAPI instance with all routers,
    middleware, and configuration applied. It can accept an optional
    settings object for testing or explicit configuration.

    Args:
        settings: Optional ToolchatSettings instance. If not provided,
                  settings will be loaded from environment variables.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    if settings is None:
        from toolchat_server.dependencies import get_settings

        settings = get_settings()

    app = FastAPI(
        title="toolchat-server",
        description="Streaming chat completions with MCP tool orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings in app.state for lifespan access
    app.state.settings = settings

    # Configure CORS
    # Note: FastAPI's type hints for add_middleware are overly strict
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(models.router)
    app.include_router(servers.router)
    app.include_router(chat.router)

    return app
