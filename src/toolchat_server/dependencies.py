"""Dependency injection providers for FastAPI endpoints.

This module provides FastAPI dependency functions that are used across
multiple routers to inject common dependencies like settings and services.
Objects created in the lifespan are read from app.state so that tests can
run against their own isolated application instances.
"""

from functools import lru_cache

from fastapi import HTTPException, Request

from toolchat_server.config import ToolchatSettings
from toolchat_server.llm import CompletionClient
from toolchat_server.mcp import ConnectionRegistry, ToolDirectory, ToolInvoker


@lru_cache
def get_settings() -> ToolchatSettings:
    """Get the application settings instance.

    This function is cached so that the same settings instance is reused
    across all requests. Settings are loaded from environment variables
    with the TOOLCHAT_ prefix.

    Returns:
        ToolchatSettings: The application configuration settings.
    """
    return ToolchatSettings()


def _app_state(request: Request, name: str, label: str):
    if not hasattr(request.app.state, name):
        raise HTTPException(
            status_code=503,
            detail=f"{label} not initialized",
        )
    return getattr(request.app.state, name)


def get_completion_client(request: Request) -> CompletionClient:
    """Get the completion client from app state.

    Raises:
        HTTPException: If the client is not initialized (503 Service Unavailable).
    """
    return _app_state(request, "completion_client", "Completion client")


def get_registry(request: Request) -> ConnectionRegistry:
    """Get the connection registry from app state.

    Raises:
        HTTPException: If the registry is not initialized (503 Service Unavailable).
    """
    return _app_state(request, "registry", "Connection registry")


def get_directory(request: Request) -> ToolDirectory:
    """Get the tool directory from app state."""
    return _app_state(request, "directory", "Tool directory")


def get_invoker(request: Request) -> ToolInvoker:
    """Get the tool invoker from app state."""
    return _app_state(request, "invoker", "Tool invoker")
