"""Tool server management endpoints.

This module provides endpoints for registering, replacing, reconnecting,
disconnecting and removing MCP tool servers, for listing the aggregated tool
catalog, and for reading resources from connected servers.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from toolchat_server.dependencies import get_directory, get_invoker, get_registry
from toolchat_server.mcp import ConnectionRegistry, ToolDirectory, ToolInvoker
from toolchat_server.models.servers import (
    ResourceReadResponse,
    ServerConfigRequest,
    ServerListResponse,
    ServerStateResponse,
    ToolListItem,
    ToolListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["servers"])


def _not_found(server_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={
            "error": {
                "code": "server_not_found",
                "message": f"Tool server {server_id} not found",
                "details": {"server_id": server_id},
            }
        },
    )


def _state_response(registry: ConnectionRegistry, server_id: str) -> ServerStateResponse:
    state = registry.get_state(server_id)
    if state is None:
        raise _not_found(server_id)
    return ServerStateResponse.from_state(state, registry.get_config(server_id))


@router.get("/servers", response_model=ServerListResponse)
async def list_servers(
    registry: ConnectionRegistry = Depends(get_registry),
) -> ServerListResponse:
    """List every registered tool server with its current state."""
    servers = [
        ServerStateResponse.from_state(state, registry.get_config(state.server_id))
        for state in registry.list_states()
    ]
    return ServerListResponse(servers=servers, count=len(servers))


@router.get("/servers/{server_id}", response_model=ServerStateResponse)
async def get_server(
    server_id: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ServerStateResponse:
    """Get the state of one tool server.

    Raises:
        HTTPException: 404 if the server is not registered
    """
    return _state_response(registry, server_id)


@router.put("/servers/{server_id}", response_model=ServerStateResponse)
async def put_server(
    server_id: str,
    request_body: ServerConfigRequest,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ServerStateResponse:
    """Register or replace a tool server configuration.

    An enabled server is connected right away; the response carries the
    resulting state, which is 'error' if no transport could be established.
    """
    config = request_body.to_config(server_id)
    logger.info(f"Applying configuration for tool server {server_id}")
    await registry.apply(config)
    return _state_response(registry, server_id)


@router.delete("/servers/{server_id}", status_code=204)
async def delete_server(
    server_id: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> None:
    """Remove a tool server and close its session.

    Raises:
        HTTPException: 404 if the server is not registered
    """
    if registry.get_state(server_id) is None and registry.get_config(server_id) is None:
        raise _not_found(server_id)
    await registry.remove(server_id)


@router.post("/servers/{server_id}/reconnect", response_model=ServerStateResponse)
async def reconnect_server(
    server_id: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ServerStateResponse:
    """Reconnect a tool server with its stored configuration.

    Raises:
        HTTPException: 404 if the server is not registered
    """
    try:
        await registry.reconnect(server_id)
    except KeyError:
        raise _not_found(server_id)
    return _state_response(registry, server_id)


@router.post("/servers/{server_id}/disconnect", response_model=ServerStateResponse)
async def disconnect_server(
    server_id: str,
    registry: ConnectionRegistry = Depends(get_registry),
) -> ServerStateResponse:
    """Disconnect a tool server, keeping its configuration.

    Raises:
        HTTPException: 404 if the server is not registered
    """
    if registry.get_state(server_id) is None:
        raise _not_found(server_id)
    await registry.disconnect(server_id)
    return _state_response(registry, server_id)


@router.get("/servers/{server_id}/resources/read", response_model=ResourceReadResponse)
async def read_resource(
    server_id: str,
    uri: str = Query(..., description="URI of the resource to read"),
    registry: ConnectionRegistry = Depends(get_registry),
    invoker: ToolInvoker = Depends(get_invoker),
) -> ResourceReadResponse:
    """Read a resource from a connected tool server.

    Raises:
        HTTPException: 404 if the server is not registered, 502 if the read fails
    """
    if registry.get_state(server_id) is None:
        raise _not_found(server_id)

    result = await invoker.read_resource(server_id, uri)
    if not result.success:
        raise HTTPException(
            status_code=502,
            detail={
                "error": {
                    "code": "resource_read_error",
                    "message": result.error,
                    "details": {"server_id": server_id, "uri": uri},
                }
            },
        )
    return ResourceReadResponse(server_id=server_id, uri=uri, contents=result.content)


@router.get("/tools", response_model=ToolListResponse)
async def list_tools(
    directory: ToolDirectory = Depends(get_directory),
) -> ToolListResponse:
    """List every tool offered by the connected tool servers."""
    tools = [
        ToolListItem(
            server_id=server_id,
            name=tool.name,
            description=tool.description,
            input_schema=tool.input_schema,
        )
        for server_id, tool in directory.all_tools()
    ]
    return ToolListResponse(tools=tools, count=len(tools))
