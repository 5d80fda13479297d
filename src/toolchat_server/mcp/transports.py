"""Transport negotiation for MCP tool servers.

A tool server is reachable over either Streamable HTTP or SSE. This module
decides the order in which the two transports are tried, establishes a
session over the first one that works, and lists the server's tool and
resource catalogs once the session is up.
"""

import asyncio
import logging
import time
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

import httpx
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamable_http_client
from mcp.types import Implementation

from toolchat_server.errors import ToolExecutionError, TransportError
from toolchat_server.mcp.types import (
    ResourceDescriptor,
    ServerStatus,
    ToolDescriptor,
    ToolServerConfig,
    ToolServerState,
    TransportKind,
    TransportPreference,
)

logger = logging.getLogger(__name__)

# URLs containing this path segment are most likely SSE-only servers
SSE_PATH_HINT = "/sse"

CLIENT_INFO = Implementation(name="toolchat-server", version="0.1.0")

CLOSE_TIMEOUT_SECONDS = 5.0


def transport_order(config: ToolServerConfig) -> list[TransportKind]:
    """Return the transports to try for a server, in order.

    An explicit preference yields only that transport. With 'auto', SSE is
    tried first when the URL looks like an SSE endpoint, Streamable HTTP
    otherwise, and the other transport is the fallback.
    """
    if config.transport_type is TransportPreference.STREAMABLE_HTTP:
        return [TransportKind.STREAMABLE_HTTP]
    if config.transport_type is TransportPreference.SSE:
        return [TransportKind.SSE]
    if SSE_PATH_HINT in config.url:
        return [TransportKind.SSE, TransportKind.STREAMABLE_HTTP]
    return [TransportKind.STREAMABLE_HTTP, TransportKind.SSE]


class ToolServerSession:
    """A live MCP client session with one tool server.

    The MCP SDK's transport and session context managers must be entered and
    exited by the same task, so a dedicated owner task holds them open until
    close() is called. All other methods may be called from any task.

    Attributes:
        config: The server configuration this session was opened with
        transport: The transport the session runs over
    """

    def __init__(self, config: ToolServerConfig, transport: TransportKind) -> None:
        self.config = config
        self.transport = transport
        self._session: ClientSession | None = None
        self._ready: asyncio.Future[None] | None = None
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def open(self, timeout: float) -> None:
        """Establish the transport and perform the MCP handshake.

        Args:
            timeout: Seconds to wait for the handshake to complete

        Raises:
            TransportError: If the session cannot be established in time
        """
        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(
            self._run(), name=f"mcp-session-{self.config.id}"
        )
        try:
            await asyncio.wait_for(self._ready, timeout)
        except asyncio.TimeoutError:
            # The owner task is still inside the handshake and will not see _stop
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            raise TransportError(
                self.transport.value,
                f"Handshake with {self.config.url} timed out after {timeout} seconds",
            ) from None

    async def _run(self) -> None:
        """Owner task: hold the transport and session open until stopped."""
        assert self._ready is not None
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await stack.enter_async_context(
                    self._open_streams()
                )
                session = await stack.enter_async_context(
                    ClientSession(read_stream, write_stream, client_info=CLIENT_INFO)
                )
                await session.initialize()
                self._session = session
                if not self._ready.done():
                    self._ready.set_result(None)
                await self._stop.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(
                    TransportError(
                        self.transport.value,
                        f"{self.transport.value} connection to {self.config.url} failed: {e}",
                    )
                )
            else:
                logger.warning(f"Session with {self.config.name} ended: {e}")
        finally:
            self._session = None

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[tuple[Any, Any]]:
        """Open the raw read/write streams for the configured transport.

        Custom headers are attached to the underlying HTTP client so that
        every request, including the initial handshake, carries them.
        """
        headers = dict(self.config.headers)
        if self.transport is TransportKind.STREAMABLE_HTTP:
            async with httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(30.0, read=300.0),
                follow_redirects=True,
            ) as http_client:
                async with streamable_http_client(
                    self.config.url, http_client=http_client
                ) as (read_stream, write_stream, _):
                    yield read_stream, write_stream
        else:
            async with sse_client(self.config.url, headers=headers) as (
                read_stream,
                write_stream,
            ):
                yield read_stream, write_stream

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"Session with server {self.config.id} is closed")
        return self._session

    async def list_tools(self) -> list[ToolDescriptor]:
        result = await self._require_session().list_tools()
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=dict(tool.inputSchema or {}),
            )
            for tool in result.tools
        ]

    async def list_resources(self) -> list[ResourceDescriptor]:
        result = await self._require_session().list_resources()
        return [
            ResourceDescriptor(
                uri=str(resource.uri),
                name=resource.name,
                description=resource.description,
                mime_type=resource.mimeType,
            )
            for resource in result.resources
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Invoke a tool and return its result payload.

        Returns the structured content when the server provides it, otherwise
        the list of content blocks as plain dicts.

        Raises:
            ToolExecutionError: If the server marks the result as an error
        """
        result = await self._require_session().call_tool(name, arguments)
        content = [
            block.model_dump(mode="json", exclude_none=True) for block in result.content
        ]
        if result.isError:
            texts = [block.get("text", "") for block in content if block.get("text")]
            raise ToolExecutionError("\n".join(texts) or f"Tool {name} reported an error")
        if result.structuredContent is not None:
            return result.structuredContent
        return content

    async def read_resource(self, uri: str) -> list[dict[str, Any]]:
        result = await self._require_session().read_resource(uri)
        return [item.model_dump(mode="json", exclude_none=True) for item in result.contents]

    async def close(self) -> None:
        """Stop the owner task, closing the session and its transport."""
        self._stop.set()
        if self._task is None or self._task.done():
            return
        try:
            await asyncio.wait_for(self._task, CLOSE_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(
                f"Session with {self.config.name} did not close within "
                f"{CLOSE_TIMEOUT_SECONDS} seconds and was cancelled"
            )


SessionFactory = Callable[[ToolServerConfig, TransportKind], ToolServerSession]


@dataclass
class ConnectionOutcome:
    """Result of a connection attempt: the new state and, if any, the session."""

    state: ToolServerState
    session: ToolServerSession | None = None


class TransportNegotiator:
    """Establishes tool server sessions with transport fallback.

    Attributes:
        connect_timeout: Seconds allowed for each transport's handshake
    """

    def __init__(
        self,
        session_factory: SessionFactory = ToolServerSession,
        connect_timeout: float = 10.0,
    ) -> None:
        self._session_factory = session_factory
        self.connect_timeout = connect_timeout

    async def attempt(
        self, transport: TransportKind, config: ToolServerConfig
    ) -> ToolServerSession:
        """Open a session over one transport.

        Raises:
            TransportError: If the session could not be established
        """
        session = self._session_factory(config, transport)
        try:
            await session.open(self.connect_timeout)
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(transport.value, str(e)) from e
        return session

    async def connect(self, config: ToolServerConfig) -> ConnectionOutcome:
        """Connect to a tool server, falling back to the alternate transport.

        The fallback is only tried when establishing the session fails. Once
        a session is up, catalog listing failures degrade to empty catalogs.

        Args:
            config: The server configuration

        Returns:
            ConnectionOutcome with a CONNECTED state and live session, or an
            ERROR state carrying the last failure and no session
        """
        last_error: TransportError | None = None

        for transport in transport_order(config):
            try:
                session = await self.attempt(transport, config)
            except TransportError as e:
                logger.info(
                    f"{transport.value} transport failed for {config.name}: {e}"
                )
                last_error = e
                continue

            logger.info(f"Using {transport.value} transport for {config.name}")
            tools, resources = await asyncio.gather(
                self._list_tools(session, config),
                self._list_resources(session, config),
            )
            state = ToolServerState(
                server_id=config.id,
                status=ServerStatus.CONNECTED,
                tools=tools,
                resources=resources,
                last_connected=time.time(),
            )
            logger.info(
                f"Connected to {config.name}: {len(tools)} tools, "
                f"{len(resources)} resources"
            )
            return ConnectionOutcome(state=state, session=session)

        message = str(last_error) if last_error else "No transport available"
        logger.error(f"All transports failed for {config.name}: {message}")
        return ConnectionOutcome(
            state=ToolServerState(
                server_id=config.id,
                status=ServerStatus.ERROR,
                error=message,
            )
        )

    async def _list_tools(
        self, session: ToolServerSession, config: ToolServerConfig
    ) -> list[ToolDescriptor]:
        try:
            return await session.list_tools()
        except Exception as e:
            logger.error(f"Error listing tools from {config.name}: {e}")
            return []

    async def _list_resources(
        self, session: ToolServerSession, config: ToolServerConfig
    ) -> list[ResourceDescriptor]:
        try:
            return await session.list_resources()
        except Exception as e:
            logger.error(f"Error listing resources from {config.name}: {e}")
            return []
