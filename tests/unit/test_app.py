"""Unit tests for the FastAPI app factory and configuration."""

import json

import pytest
from fastapi import FastAPI

from toolchat_server import __version__, create_app
from toolchat_server.config import ToolchatSettings
from toolchat_server.llm import LLMProvider, ToolCallingMode
from toolchat_server.mcp import TransportPreference


def test_create_app_with_settings(test_settings):
    """Test that create_app accepts custom settings."""
    app = create_app(settings=test_settings)
    assert isinstance(app, FastAPI)
    assert app.state.settings is test_settings


def test_create_app_metadata(test_settings):
    """Test that app has correct metadata."""
    app = create_app(settings=test_settings)
    assert app.title == "toolchat-server"
    assert app.version == "0.1.0"
    assert "MCP tool orchestration" in app.description


def test_create_app_includes_routers(test_settings):
    """Test that all routers are registered."""
    app = create_app(settings=test_settings)

    routes = [route.path for route in app.routes]  # type: ignore[attr-defined]
    assert "/api/v1/health" in routes
    assert "/api/v1/models" in routes
    assert "/api/v1/servers" in routes
    assert "/api/v1/servers/{server_id}" in routes
    assert "/api/v1/tools" in routes
    assert "/api/v1/chat" in routes
    assert "/api/v1/chat/stream" in routes
    assert "/api/v1/chat/ws" in routes


def test_create_app_has_cors_middleware(test_settings):
    """Test that CORS middleware is configured."""
    app = create_app(settings=test_settings)

    middleware_classes = [m.cls.__name__ for m in app.user_middleware]  # type: ignore[attr-defined]
    assert "CORSMiddleware" in middleware_classes


def test_version_constant():
    """Test that __version__ is defined and matches app version."""
    assert __version__ == "0.1.0"


def test_settings_default_values(monkeypatch):
    """Test that settings have correct default values."""
    for name in ("TOOLCHAT_MODEL", "TOOLCHAT_API_ENDPOINT", "TOOLCHAT_TOOL_SERVERS"):
        monkeypatch.delenv(name, raising=False)

    settings = ToolchatSettings()

    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.api_endpoint == "https://api.openai.com/v1/chat/completions"
    assert settings.provider is LLMProvider.OPENAI_COMPATIBLE
    assert settings.tool_calling_mode is ToolCallingMode.PROMPT
    assert settings.max_tool_rounds == 5
    assert settings.tool_servers == []
    assert settings.log_level == "INFO"


def test_settings_env_prefix(monkeypatch):
    """Test that settings respect TOOLCHAT_ environment variable prefix."""
    monkeypatch.setenv("TOOLCHAT_PORT", "9000")
    monkeypatch.setenv("TOOLCHAT_MODEL", "llama3")
    monkeypatch.setenv("TOOLCHAT_TOOL_CALLING_MODE", "native")

    settings = ToolchatSettings()

    assert settings.port == 9000
    assert settings.model == "llama3"
    assert settings.tool_calling_mode is ToolCallingMode.NATIVE


def test_settings_tool_servers_from_json(monkeypatch):
    """Test that tool servers are read from a JSON environment variable."""
    servers = [
        {
            "id": "weather",
            "name": "Weather",
            "url": "https://weather.test/sse",
            "transportType": "sse",
        }
    ]
    monkeypatch.setenv("TOOLCHAT_TOOL_SERVERS", json.dumps(servers))

    settings = ToolchatSettings()

    assert len(settings.tool_servers) == 1
    server = settings.tool_servers[0]
    assert server.id == "weather"
    assert server.transport_type is TransportPreference.SSE
    assert server.enabled is True


def test_settings_reject_negative_rounds():
    """Test that max_tool_rounds cannot be negative."""
    with pytest.raises(ValueError):
        ToolchatSettings(max_tool_rounds=-1)


def test_completion_defaults(test_settings):
    """Test that completion defaults mirror the settings."""
    defaults = test_settings.completion_defaults()

    assert defaults.api_endpoint == test_settings.api_endpoint
    assert defaults.model == "test-model"
    assert defaults.api_key == "test-key"
    assert defaults.max_tool_rounds == 5
