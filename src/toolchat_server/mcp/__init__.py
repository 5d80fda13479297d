"""MCP tool server integration layer.

This package manages connections to remote MCP tool servers over
Streamable HTTP or SSE, aggregates their tool catalogs, and executes
tool calls with per-server timeouts.
"""

from toolchat_server.mcp.directory import ToolDirectory
from toolchat_server.mcp.invoker import ToolInvoker
from toolchat_server.mcp.registry import ConnectionRegistry
from toolchat_server.mcp.transports import (
    ConnectionOutcome,
    ToolServerSession,
    TransportNegotiator,
    transport_order,
)
from toolchat_server.mcp.types import (
    ParameterSpec,
    ResourceDescriptor,
    ServerStatus,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    ToolServerConfig,
    ToolServerState,
    TransportKind,
    TransportPreference,
)

__all__ = [
    # Components
    "ConnectionRegistry",
    "ToolDirectory",
    "ToolInvoker",
    "TransportNegotiator",
    "ToolServerSession",
    "ConnectionOutcome",
    "transport_order",
    # Types
    "ParameterSpec",
    "ResourceDescriptor",
    "ServerStatus",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolServerConfig",
    "ToolServerState",
    "TransportKind",
    "TransportPreference",
]
