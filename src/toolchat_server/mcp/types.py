"""Type definitions for MCP tool server integration.

This module contains the configuration model for tool servers and the
dataclasses describing their runtime state, advertised catalogs, and
tool call requests/results.
"""

import enum
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TOOL_TIMEOUT_MS = 30000


class TransportPreference(str, enum.Enum):
    """Which wire transport to use for a tool server."""

    AUTO = "auto"
    STREAMABLE_HTTP = "streamableHttp"
    SSE = "sse"


class TransportKind(str, enum.Enum):
    """A concrete wire transport."""

    STREAMABLE_HTTP = "streamableHttp"
    SSE = "sse"


class ServerStatus(str, enum.Enum):
    """Connection status of a tool server."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ToolServerConfig(BaseModel):
    """Configuration of a remote MCP tool server.

    Instances are immutable. Changing any field means registering a new
    config, which triggers a fresh connect.
    """

    id: str = Field(min_length=1, description="Opaque server identifier")
    name: str = Field(description="Human readable server name")
    url: str = Field(description="HTTP/SSE endpoint URL")
    enabled: bool = Field(default=True)
    description: str | None = Field(default=None)
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Custom headers sent with every request (e.g. auth tokens)",
    )
    transport_type: TransportPreference = Field(
        default=TransportPreference.AUTO,
        alias="transportType",
        description="Transport protocol, 'auto' negotiates with fallback",
    )
    timeout: int = Field(
        default=DEFAULT_TOOL_TIMEOUT_MS,
        gt=0,
        description="Tool call timeout in milliseconds",
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)


@dataclass(frozen=True)
class ParameterSpec:
    """A single parameter of a tool's input schema."""

    name: str
    type: str
    required: bool = False
    enum: list[Any] | None = None
    description: str | None = None


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool advertised by a tool server.

    Tool names are unique within one server only. The descriptor belongs to
    the server that advertised it and is replaced wholesale on reconnect.
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @property
    def required(self) -> set[str]:
        """Names of the required parameters."""
        return set(self.input_schema.get("required") or [])

    @property
    def parameters(self) -> dict[str, ParameterSpec]:
        """Parameters declared in the input schema, in declaration order."""
        properties = self.input_schema.get("properties") or {}
        required = self.required
        params: dict[str, ParameterSpec] = {}
        for name, schema in properties.items():
            schema = schema if isinstance(schema, dict) else {}
            params[name] = ParameterSpec(
                name=name,
                type=str(schema.get("type", "any")),
                required=name in required,
                enum=schema.get("enum"),
                description=schema.get("description"),
            )
        return params


@dataclass(frozen=True)
class ResourceDescriptor:
    """A readable resource advertised by a tool server."""

    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = None


@dataclass
class ToolServerState:
    """Runtime state of one tool server.

    Exactly one state exists per registered server id. Tools and resources
    are only meaningful while the status is CONNECTED.
    """

    server_id: str
    status: ServerStatus = ServerStatus.DISCONNECTED
    tools: list[ToolDescriptor] = field(default_factory=list)
    resources: list[ResourceDescriptor] = field(default_factory=list)
    error: str | None = None
    last_connected: float | None = None


@dataclass(frozen=True)
class ToolCallRequest:
    """A single tool invocation, constructed fresh per attempt."""

    server_id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True)
class ToolCallResult:
    """Outcome of a tool invocation.

    Use ok() and failure() to build instances so that a result is never
    partially populated.
    """

    success: bool
    content: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, content: Any) -> "ToolCallResult":
        return cls(success=True, content=content)

    @classmethod
    def failure(cls, error: str) -> "ToolCallResult":
        return cls(success=False, error=error)
