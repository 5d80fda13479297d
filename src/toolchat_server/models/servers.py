"""Pydantic models for the tool server management API."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from toolchat_server.mcp.types import (
    DEFAULT_TOOL_TIMEOUT_MS,
    ServerStatus,
    ToolDescriptor,
    ToolServerConfig,
    ToolServerState,
    TransportPreference,
)


class ServerConfigRequest(BaseModel):
    """Request body for PUT /api/v1/servers/{server_id}."""

    name: str
    url: str
    enabled: bool = True
    description: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    transport_type: TransportPreference = Field(
        default=TransportPreference.AUTO, alias="transportType"
    )
    timeout: int = Field(default=DEFAULT_TOOL_TIMEOUT_MS, gt=0)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "Weather",
                "url": "https://weather.example.com/mcp",
                "headers": {"Authorization": "Bearer token"},
                "transportType": "auto",
                "timeout": 30000,
            }
        },
    )

    def to_config(self, server_id: str) -> ToolServerConfig:
        return ToolServerConfig(id=server_id, **self.model_dump())


class ToolResponse(BaseModel):
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_descriptor(cls, tool: ToolDescriptor) -> "ToolResponse":
        return cls(
            name=tool.name,
            description=tool.description,
            input_schema=tool.input_schema,
        )


class ResourceResponse(BaseModel):
    uri: str
    name: str
    description: str | None = None
    mime_type: str | None = None


class ServerStateResponse(BaseModel):
    """Runtime state of one tool server."""

    server_id: str
    name: str | None = Field(default=None, description="Configured name, if known")
    url: str | None = Field(default=None)
    enabled: bool | None = Field(default=None)
    status: ServerStatus
    tools: list[ToolResponse] = Field(default_factory=list)
    resources: list[ResourceResponse] = Field(default_factory=list)
    error: str | None = None
    last_connected: float | None = Field(
        default=None, description="Unix timestamp of the last successful connect"
    )

    @classmethod
    def from_state(
        cls, state: ToolServerState, config: ToolServerConfig | None = None
    ) -> "ServerStateResponse":
        return cls(
            server_id=state.server_id,
            name=config.name if config else None,
            url=config.url if config else None,
            enabled=config.enabled if config else None,
            status=state.status,
            tools=[ToolResponse.from_descriptor(tool) for tool in state.tools],
            resources=[
                ResourceResponse(
                    uri=resource.uri,
                    name=resource.name,
                    description=resource.description,
                    mime_type=resource.mime_type,
                )
                for resource in state.resources
            ],
            error=state.error,
            last_connected=state.last_connected,
        )


class ServerListResponse(BaseModel):
    servers: list[ServerStateResponse]
    count: int


class ToolListItem(ToolResponse):
    server_id: str


class ToolListResponse(BaseModel):
    """Response for GET /api/v1/tools: every tool of every connected server."""

    tools: list[ToolListItem]
    count: int


class ResourceReadResponse(BaseModel):
    server_id: str
    uri: str
    contents: list[dict[str, Any]]
