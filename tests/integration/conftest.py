"""Pytest configuration for integration tests.

This module provides integration-test-specific fixtures that replace the
completion endpoint and the MCP transports before the app is created, so
the lifespan wires the real registry, directory and invoker to fakes.
"""

import json
from unittest.mock import patch

import pytest
import pytest_asyncio

from toolchat_server.mcp import TransportNegotiator


@pytest.fixture
def completions(scripted_completions):
    """Scripted completion endpoint; tests append responses before calling the API."""
    return scripted_completions([])


@pytest.fixture(autouse=True)
def mock_completion_client(completions):
    """Mock CompletionClient for all integration tests.

    The lifespan receives a real CompletionClient whose HTTP transport
    replays the scripted responses.
    """
    with patch("toolchat_server.app.CompletionClient") as client_class:
        client_class.side_effect = lambda **kwargs: completions.client()
        yield completions


@pytest.fixture(autouse=True)
def mock_transport_negotiator(session_factory, weather_tool):
    """Route every tool server connection through the fake session factory.

    The 'weather' server advertises get_weather, which answers
    {"temp_c": 21}.
    """
    session_factory.tools["weather"] = [weather_tool]
    session_factory.results["weather"] = {"get_weather": {"temp_c": 21}}

    with patch("toolchat_server.app.TransportNegotiator") as negotiator_class:
        negotiator_class.side_effect = lambda **kwargs: TransportNegotiator(
            session_factory=session_factory, **kwargs
        )
        yield session_factory


@pytest_asyncio.fixture
async def weather_server(async_client):
    """Register and connect the 'weather' tool server through the API."""
    response = await async_client.put(
        "/api/v1/servers/weather",
        json={"name": "Weather", "url": "https://weather.test/mcp"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "connected"
    return response.json()


def _parse_sse(text: str) -> list[dict]:
    events = []
    # Normalize line endings and split by double newline
    for block in text.replace("\r\n", "\n").strip().split("\n\n"):
        event_type = None
        event_data = None
        for part in block.split("\n"):
            if part.startswith("event:"):
                event_type = part.split(":", 1)[1].strip()
            elif part.startswith("data:"):
                event_data = part.split(":", 1)[1].strip()
        if event_type and event_data:
            events.append({"event": event_type, "data": json.loads(event_data)})
    return events


@pytest.fixture
def parse_sse():
    """Parse an SSE response body into a list of {event, data} dicts."""
    return _parse_sse
