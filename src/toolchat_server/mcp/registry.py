"""Connection registry for MCP tool servers.

This module provides the ConnectionRegistry class which owns, per server id,
the last applied configuration, the live session handle, and the runtime
state consumed by the API and the tool directory.
"""

import asyncio
import itertools
import logging

from toolchat_server.errors import InvalidTransitionError
from toolchat_server.mcp.transports import (
    ConnectionOutcome,
    ToolServerSession,
    TransportNegotiator,
)
from toolchat_server.mcp.types import ServerStatus, ToolServerConfig, ToolServerState

logger = logging.getLogger(__name__)

_VALID_TRANSITIONS: dict[ServerStatus, frozenset[ServerStatus]] = {
    ServerStatus.DISCONNECTED: frozenset({ServerStatus.CONNECTING}),
    ServerStatus.CONNECTING: frozenset(
        {ServerStatus.CONNECTED, ServerStatus.ERROR, ServerStatus.CONNECTING}
    ),
    ServerStatus.CONNECTED: frozenset(
        {ServerStatus.DISCONNECTED, ServerStatus.CONNECTING}
    ),
    ServerStatus.ERROR: frozenset({ServerStatus.DISCONNECTED, ServerStatus.CONNECTING}),
}


class ConnectionRegistry:
    """Owns tool server configurations, live sessions, and states.

    A single registry is created at application startup and handed to the
    components that need it. Connect attempts for the same server id may
    overlap; the most recently started attempt wins and superseded attempts
    close their own session.
    """

    def __init__(self, negotiator: TransportNegotiator | None = None) -> None:
        """Initialize the registry.

        Args:
            negotiator: Transport negotiator used to open sessions
        """
        self.negotiator = negotiator or TransportNegotiator()
        self._configs: dict[str, ToolServerConfig] = {}
        self._sessions: dict[str, ToolServerSession] = {}
        self._states: dict[str, ToolServerState] = {}
        self._attempts: dict[str, int] = {}
        self._attempt_counter = itertools.count(1)

    # --- Queries ---

    def get_state(self, server_id: str) -> ToolServerState | None:
        return self._states.get(server_id)

    def list_states(self) -> list[ToolServerState]:
        return list(self._states.values())

    def get_session(self, server_id: str) -> ToolServerSession | None:
        return self._sessions.get(server_id)

    def get_config(self, server_id: str) -> ToolServerConfig | None:
        return self._configs.get(server_id)

    # --- State transitions ---

    def _transition(self, new_state: ToolServerState) -> None:
        """Replace a server's state, enforcing the allowed transitions.

        Raises:
            InvalidTransitionError: If the status change is not allowed
        """
        current = self._states.get(new_state.server_id)
        current_status = current.status if current else ServerStatus.DISCONNECTED
        if new_state.status not in _VALID_TRANSITIONS[current_status]:
            raise InvalidTransitionError(
                f"Invalid server state transition for {new_state.server_id}: "
                f"{current_status.value} -> {new_state.status.value}"
            )
        self._states[new_state.server_id] = new_state

    # --- Commands ---

    async def register(self, config: ToolServerConfig) -> ToolServerState:
        """Register or replace a server configuration and connect to it.

        Any existing session for the same id is closed first. The server's
        state moves to CONNECTING and then to CONNECTED or ERROR.

        Args:
            config: The server configuration to apply

        Returns:
            The resulting ToolServerState
        """
        self._configs[config.id] = config
        return await self._connect(config)

    async def reconnect(self, server_id: str) -> ToolServerState:
        """Reconnect a registered server using its stored configuration.

        Raises:
            KeyError: If the server id is not registered
        """
        config = self._configs.get(server_id)
        if config is None:
            raise KeyError(server_id)
        return await self._connect(config)

    async def apply(self, config: ToolServerConfig) -> ToolServerState:
        """Apply a configuration, connecting only if it is enabled.

        A disabled configuration is stored and its server left disconnected.
        """
        if config.enabled:
            return await self.register(config)
        self._configs[config.id] = config
        await self.disconnect(config.id)
        return self._states.setdefault(config.id, ToolServerState(server_id=config.id))

    async def _connect(self, config: ToolServerConfig) -> ToolServerState:
        attempt = next(self._attempt_counter)
        self._attempts[config.id] = attempt

        await self._close_session(config.id)

        previous = self._states.get(config.id)
        self._transition(
            ToolServerState(
                server_id=config.id,
                status=ServerStatus.CONNECTING,
                last_connected=previous.last_connected if previous else None,
            )
        )
        logger.info(f"Connecting to tool server {config.name} ({config.url})")

        outcome = await self.negotiator.connect(config)

        if self._attempts.get(config.id) != attempt:
            logger.info(
                f"Connect attempt for {config.name} was superseded, discarding it"
            )
            await self._discard(outcome)
            current = self._states.get(config.id)
            if (
                config.id not in self._attempts
                and current is not None
                and current.status is ServerStatus.CONNECTING
            ):
                # Disconnected while the attempt was in flight
                self._transition(outcome.state)
                self._transition(
                    ToolServerState(
                        server_id=config.id,
                        status=ServerStatus.DISCONNECTED,
                        last_connected=outcome.state.last_connected,
                    )
                )
            return self._states.get(config.id) or outcome.state

        if outcome.session is not None:
            self._sessions[config.id] = outcome.session
        self._transition(outcome.state)
        return outcome.state

    async def _discard(self, outcome: ConnectionOutcome) -> None:
        if outcome.session is None:
            return
        try:
            await outcome.session.close()
        except Exception as e:
            logger.error(f"Error closing superseded session: {e}")

    async def disconnect(self, server_id: str) -> None:
        """Disconnect a server, keeping its state entry as DISCONNECTED.

        The stored configuration is kept so that reconnect() can bring the
        server back.
        """
        self._attempts.pop(server_id, None)
        await self._close_session(server_id)

        state = self._states.get(server_id)
        if state is not None and state.status in (
            ServerStatus.CONNECTED,
            ServerStatus.ERROR,
        ):
            self._transition(
                ToolServerState(
                    server_id=server_id,
                    status=ServerStatus.DISCONNECTED,
                    last_connected=state.last_connected,
                )
            )

    async def remove(self, server_id: str) -> None:
        """Remove a server entirely, closing its session if one exists.

        Never raises on close failures: they are logged, since the server is
        being torn down regardless.
        """
        self._attempts.pop(server_id, None)
        await self._close_session(server_id)
        self._configs.pop(server_id, None)
        self._states.pop(server_id, None)
        logger.info(f"Removed tool server {server_id}")

    async def _close_session(self, server_id: str) -> None:
        session = self._sessions.pop(server_id, None)
        if session is None:
            return
        try:
            await session.close()
        except Exception as e:
            logger.error(f"Error closing session for {server_id}: {e}")

    async def connect_enabled(
        self, configs: list[ToolServerConfig]
    ) -> list[ToolServerState]:
        """Connect every enabled configuration.

        A failure to connect one server never prevents connecting the others.

        Args:
            configs: Server configurations, disabled ones are skipped

        Returns:
            The resulting states of the enabled servers
        """
        enabled = [config for config in configs if config.enabled]
        if not enabled:
            logger.info("No enabled tool servers to connect")
            return []

        logger.info(f"Connecting to {len(enabled)} enabled tool servers...")
        states = []
        for config in enabled:
            try:
                states.append(await self.register(config))
            except Exception as e:
                logger.error(f"Failed to connect to {config.name}: {e}")

        tool_count = sum(
            len(state.tools)
            for state in self._states.values()
            if state.status is ServerStatus.CONNECTED
        )
        logger.info(f"Total tools available: {tool_count}")
        return states

    async def close_all(self) -> None:
        """Close every live session (used at shutdown)."""
        server_ids = list(self._sessions)
        await asyncio.gather(*(self.disconnect(server_id) for server_id in server_ids))
