"""Aggregated view of the tools offered by all connected tool servers."""

from toolchat_server.mcp.registry import ConnectionRegistry
from toolchat_server.mcp.types import ServerStatus, ToolDescriptor


class ToolDirectory:
    """Read-through catalog of tools across connected servers.

    Nothing is cached: every call walks the registry's current states, so a
    server that leaves the CONNECTED state disappears immediately.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def all_tools(self) -> list[tuple[str, ToolDescriptor]]:
        """Return (server_id, tool) pairs for every connected server."""
        return [
            (state.server_id, tool)
            for state in self.registry.list_states()
            if state.status is ServerStatus.CONNECTED
            for tool in state.tools
        ]

    def find(self, server_id: str, tool_name: str) -> ToolDescriptor | None:
        state = self.registry.get_state(server_id)
        if state is None or state.status is not ServerStatus.CONNECTED:
            return None
        for tool in state.tools:
            if tool.name == tool_name:
                return tool
        return None
