"""Health check endpoint router."""

import logging

from fastapi import APIRouter, Request

from toolchat_server import __version__
from toolchat_server.mcp import ConnectionRegistry, ServerStatus
from toolchat_server.models.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Returns the current health status and version of the toolchat-server.
    Also reports tool server connectivity if the registry is initialized.

    Args:
        request: The FastAPI request object.

    Returns:
        HealthResponse: Health status and version information.
    """
    servers_connected = None
    servers_total = None
    tools_available = None

    if hasattr(request.app.state, "registry"):
        registry: ConnectionRegistry = request.app.state.registry
        states = registry.list_states()
        connected = [state for state in states if state.status is ServerStatus.CONNECTED]
        servers_connected = len(connected)
        servers_total = len(states)
        tools_available = sum(len(state.tools) for state in connected)
        logger.debug(
            f"Tool servers: {servers_connected}/{servers_total} connected, "
            f"{tools_available} tools"
        )

    return HealthResponse(
        status="ok",
        version=__version__,
        servers_connected=servers_connected,
        servers_total=servers_total,
        tools_available=tools_available,
    )
