"""Health check response model."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for the health check endpoint.

    Attributes:
        status: Health status indicator ("ok" or "error").
        version: The version of toolchat-server.
        servers_connected: Number of tool servers currently connected.
        servers_total: Number of tool servers known to the registry.
        tools_available: Number of tools offered by connected servers.
    """

    status: str = Field(..., description="Health status of the service")
    version: str = Field(..., description="Version of toolchat-server")
    servers_connected: int | None = Field(
        default=None,
        description="Number of connected tool servers",
    )
    servers_total: int | None = Field(
        default=None,
        description="Number of registered tool servers",
    )
    tools_available: int | None = Field(
        default=None,
        description="Number of tools offered by connected servers",
    )
