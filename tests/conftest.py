"""Pytest configuration and shared fixtures for toolchat-server tests.

This module provides common fixtures used across all test modules,
including test app creation, async client setup, a scripted completion
endpoint and fake MCP tool server sessions.
"""

import asyncio
import json
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from toolchat_server import create_app
from toolchat_server.config import ToolchatSettings
from toolchat_server.errors import ToolExecutionError, TransportError
from toolchat_server.llm import CompletionClient
from toolchat_server.mcp import (
    ResourceDescriptor,
    ToolDescriptor,
    ToolServerConfig,
    TransportKind,
)

COMPLETION_URL = "http://llm.test/v1/chat/completions"

WEATHER_TOOL = ToolDescriptor(
    name="get_weather",
    description="Get the current weather for a city",
    input_schema={
        "type": "object",
        "properties": {
            "city": {"type": "string", "description": "City name"},
            "unit": {"type": "string", "enum": ["c", "f"]},
        },
        "required": ["city"],
    },
)


class StreamRecords:
    """Builders for streamed chat completion records."""

    @staticmethod
    def content(text: str, finish_reason: str | None = None) -> dict[str, Any]:
        return {"choices": [{"delta": {"content": text}, "finish_reason": finish_reason}]}

    @staticmethod
    def tool_call(
        index: int,
        arguments: str = "",
        id: str | None = None,
        name: str | None = None,
    ) -> dict[str, Any]:
        call: dict[str, Any] = {"index": index, "function": {"arguments": arguments}}
        if id is not None:
            call["id"] = id
            call["type"] = "function"
        if name is not None:
            call["function"]["name"] = name
        return {"choices": [{"delta": {"tool_calls": [call]}, "finish_reason": None}]}

    @staticmethod
    def finish(reason: str = "stop") -> dict[str, Any]:
        return {"choices": [{"delta": {}, "finish_reason": reason}]}

    @staticmethod
    def body(*records: dict[str, Any], done: bool = True) -> bytes:
        lines = [f"data: {json.dumps(record)}\n\n" for record in records]
        if done:
            lines.append("data: [DONE]\n\n")
        return "".join(lines).encode("utf-8")

    @classmethod
    def text_body(cls, *parts: str) -> bytes:
        """A complete plain-text answer streamed in the given parts."""
        return cls.body(*(cls.content(part) for part in parts), cls.finish("stop"))


class ScriptedCompletions:
    """Completion endpoint double that replays canned responses in order.

    Each response is either a response body (served with status 200) or a
    ready httpx.Response. Request URLs, bodies and headers are recorded for
    assertions; a request without a body is recorded as None.
    """

    def __init__(self, responses: list[bytes | httpx.Response]) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, Any] | None] = []
        self.headers: list[httpx.Headers] = []
        self.urls: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        self.requests.append(json.loads(request.content) if request.content else None)
        self.headers.append(request.headers)
        if not self.responses:
            return httpx.Response(500, text="no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(
            200, content=response, headers={"content-type": "text/event-stream"}
        )

    def client(self) -> CompletionClient:
        transport = httpx.MockTransport(self.handler)
        return CompletionClient(http_client=httpx.AsyncClient(transport=transport))


class FakeToolSession:
    """Stands in for a live MCP session."""

    def __init__(
        self,
        config: ToolServerConfig,
        transport: TransportKind,
        tools: list[ToolDescriptor] | None = None,
        resources: list[ResourceDescriptor] | None = None,
        results: dict[str, Any] | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.tools = tools or []
        self.resources = resources or []
        self.results = results or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.opened = False
        self.closed = False
        self.fail_listing = False
        self.fail_close = False
        self.open_delay = 0.0

    async def open(self, timeout: float) -> None:
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        self.opened = True

    async def list_tools(self) -> list[ToolDescriptor]:
        if self.fail_listing:
            raise RuntimeError("listing failed")
        return list(self.tools)

    async def list_resources(self) -> list[ResourceDescriptor]:
        if self.fail_listing:
            raise RuntimeError("listing failed")
        return list(self.resources)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        result = self.results.get(name, {"ok": True})
        if callable(result):
            result = await result(arguments)
        if isinstance(result, Exception):
            raise result
        return result

    async def read_resource(self, uri: str) -> list[dict[str, Any]]:
        if uri not in {resource.uri for resource in self.resources}:
            raise ToolExecutionError(f"Unknown resource {uri}")
        return [{"uri": uri, "text": "resource body"}]

    async def close(self) -> None:
        self.closed = True
        if self.fail_close:
            raise RuntimeError("close failed")


class FakeSessionFactory:
    """Session factory for TransportNegotiator that never touches the network.

    Attributes:
        failing: Transports whose handshake fails
        tools: Tools advertised per server id
        created: Every session opened successfully, in order
        attempts: (server_id, transport) for every handshake attempt
    """

    def __init__(self) -> None:
        self.failing: set[TransportKind] = set()
        self.tools: dict[str, list[ToolDescriptor]] = {}
        self.results: dict[str, dict[str, Any]] = {}
        self.fail_listing = False
        self.open_delay = 0.0
        self.created: list[FakeToolSession] = []
        self.attempts: list[tuple[str, TransportKind]] = []

    def __call__(self, config: ToolServerConfig, transport: TransportKind) -> FakeToolSession:
        factory = self
        session = FakeToolSession(
            config,
            transport,
            tools=self.tools.get(config.id, []),
            results=self.results.get(config.id, {}),
        )
        session.fail_listing = self.fail_listing
        session.open_delay = self.open_delay
        original_open = session.open

        async def open(timeout: float) -> None:
            factory.attempts.append((config.id, transport))
            if transport in factory.failing:
                raise TransportError(transport.value, f"{transport.value} refused")
            await original_open(timeout)
            factory.created.append(session)

        session.open = open  # type: ignore[method-assign]
        return session


@pytest.fixture
def test_settings():
    """Create test settings pointing at a fake completion endpoint.

    Returns:
        ToolchatSettings: Settings instance configured for testing.
    """
    return ToolchatSettings(
        host="127.0.0.1",
        port=8000,
        api_endpoint=COMPLETION_URL,
        api_key="test-key",
        model="test-model",
        tool_servers=[],
        connect_timeout=1.0,
        log_level="DEBUG",
        cors_origins=["*"],
    )


@pytest.fixture
def test_app(test_settings):
    """Create a FastAPI test application instance.

    Args:
        test_settings: Test settings fixture.

    Returns:
        FastAPI: Configured test application.
    """
    return create_app(settings=test_settings)


@pytest_asyncio.fixture
async def async_client(test_app):
    """Create an async HTTP client for testing FastAPI endpoints.

    Args:
        test_app: Test application fixture.

    Yields:
        AsyncClient: Async HTTP client for making test requests.
    """
    # Trigger the lifespan startup manually for tests
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture
def records():
    """Builders for completion stream records."""
    return StreamRecords


@pytest.fixture
def scripted_completions():
    """Factory for scripted completion endpoints."""
    return ScriptedCompletions


@pytest.fixture
def session_factory():
    """A fresh fake MCP session factory."""
    return FakeSessionFactory()


@pytest.fixture
def weather_tool():
    return WEATHER_TOOL


@pytest.fixture
def weather_config():
    return ToolServerConfig(
        id="weather",
        name="Weather",
        url="https://weather.test/mcp",
        timeout=1000,
    )


@pytest.fixture
def make_session():
    """Factory for fake sessions outside of a negotiator."""

    def _make(config: ToolServerConfig, **kwargs: Any) -> FakeToolSession:
        return FakeToolSession(config, TransportKind.STREAMABLE_HTTP, **kwargs)

    return _make
