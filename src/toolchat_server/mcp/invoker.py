"""Tool invocation against connected tool servers.

The invoker never raises: every failure (server not connected, timeout,
remote error) is returned as a failed ToolCallResult so that it can be fed
back into the conversation.
"""

import asyncio
import logging
from typing import Any

from toolchat_server.mcp.registry import ConnectionRegistry
from toolchat_server.mcp.types import (
    DEFAULT_TOOL_TIMEOUT_MS,
    ToolCallRequest,
    ToolCallResult,
)

logger = logging.getLogger(__name__)


class ToolInvoker:
    """Executes tool calls with a per-server timeout.

    A call that outlives its timeout is abandoned rather than cancelled: it
    keeps running as a detached task whose late outcome is only logged.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        self._abandoned: set[asyncio.Task[Any]] = set()

    def _timeout_ms(self, server_id: str) -> int:
        config = self.registry.get_config(server_id)
        return config.timeout if config else DEFAULT_TOOL_TIMEOUT_MS

    async def call(self, request: ToolCallRequest) -> ToolCallResult:
        """Call a tool on the server named in the request.

        Args:
            request: The tool call to execute

        Returns:
            ToolCallResult: success with the tool's payload, or a failure
            describing what went wrong
        """
        session = self.registry.get_session(request.server_id)
        if session is None:
            return ToolCallResult.failure(f"Server {request.server_id} not connected")

        timeout_ms = self._timeout_ms(request.server_id)
        logger.info(
            f"Calling tool {request.tool_name} on {request.server_id} "
            f"with arguments {request.arguments}"
        )

        task = asyncio.create_task(
            session.call_tool(request.tool_name, request.arguments)
        )
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            self._abandon(task, request)
            raise

        if not done:
            self._abandon(task, request)
            return ToolCallResult.failure(
                f"Tool call timeout after {timeout_ms / 1000:g} seconds"
            )

        try:
            content = task.result()
        except Exception as e:
            logger.error(f"Tool call {request.tool_name} failed: {e}")
            return ToolCallResult.failure(str(e) or type(e).__name__)

        logger.debug(f"Tool {request.tool_name} result: {content}")
        return ToolCallResult.ok(content)

    def _abandon(self, task: asyncio.Task[Any], request: ToolCallRequest) -> None:
        self._abandoned.add(task)

        def _finished(finished: asyncio.Task[Any]) -> None:
            self._abandoned.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.warning(
                    f"Abandoned tool call {request.tool_name} failed late: {error}"
                )
            else:
                logger.info(f"Abandoned tool call {request.tool_name} finished late")

        task.add_done_callback(_finished)

    async def read_resource(self, server_id: str, uri: str) -> ToolCallResult:
        """Read a resource from a connected server, never raising."""
        session = self.registry.get_session(server_id)
        if session is None:
            return ToolCallResult.failure(f"Server {server_id} not connected")
        try:
            return ToolCallResult.ok(await session.read_resource(uri))
        except Exception as e:
            logger.error(f"Reading resource {uri} from {server_id} failed: {e}")
            return ToolCallResult.failure(str(e) or type(e).__name__)
