"""Turn orchestration: one user request, possibly many model rounds.

The orchestrator streams a completion, filters the display text through the
active tool-calling strategy, executes any requested tool calls, and issues
follow-up requests with the results until the model answers without calling
tools. After max_tool_rounds rounds of tool execution, a final instruction
is appended and one last round runs with tool detection disabled.

Notifications are produced by an async generator, so the consumer applies
backpressure simply by pulling, and closing the generator cancels the
exchange: no further requests or tool calls are made.
"""

import enum
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, replace

from toolchat_server.chat.extraction import (
    FINAL_ANSWER_INSTRUCTION,
    ToolCallingStrategy,
    create_strategy,
)
from toolchat_server.errors import InvalidTransitionError
from toolchat_server.llm.client import CompletionClient
from toolchat_server.llm.stream import decode_stream
from toolchat_server.llm.types import (
    CompletionSettings,
    ConversationTurn,
    ToolCallingMode,
    TurnRole,
)
from toolchat_server.mcp.directory import ToolDirectory
from toolchat_server.mcp.invoker import ToolInvoker
from toolchat_server.mcp.types import ToolCallResult

logger = logging.getLogger(__name__)


class TurnState(str, enum.Enum):
    """States of one orchestrated exchange."""

    REQUESTING = "requesting"
    STREAMING_NATIVE = "streaming_native"
    STREAMING_PROMPT = "streaming_prompt"
    EXECUTING_TOOLS = "executing_tools"
    COMPLETED = "completed"
    FAILED = "failed"


_VALID_TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.REQUESTING: frozenset({TurnState.STREAMING_NATIVE, TurnState.STREAMING_PROMPT}),
    TurnState.STREAMING_NATIVE: frozenset({TurnState.EXECUTING_TOOLS, TurnState.COMPLETED}),
    TurnState.STREAMING_PROMPT: frozenset({TurnState.EXECUTING_TOOLS, TurnState.COMPLETED}),
    TurnState.EXECUTING_TOOLS: frozenset(
        {TurnState.STREAMING_NATIVE, TurnState.STREAMING_PROMPT}
    ),
    TurnState.COMPLETED: frozenset(),
    TurnState.FAILED: frozenset(),
}

_TERMINAL_STATES: frozenset[TurnState] = frozenset({TurnState.COMPLETED, TurnState.FAILED})


@dataclass(frozen=True)
class StreamChunk:
    """Display-ready text for the caller."""

    stream_id: str
    chunk: str


@dataclass(frozen=True)
class StreamCompleted:
    stream_id: str


@dataclass(frozen=True)
class StreamFailed:
    stream_id: str
    error: str


Notification = StreamChunk | StreamCompleted | StreamFailed


def new_stream_id() -> str:
    return f"stream_{uuid.uuid4().hex}"


class TurnOrchestrator:
    """Drives one exchange through the turn state machine.

    An orchestrator is single-use: create one per user request and consume
    run() once. The conversation, including the assistant and tool-result
    turns added along the way, is available as ``turns``.
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        directory: ToolDirectory,
        invoker: ToolInvoker,
        settings: CompletionSettings,
        turns: list[ConversationTurn],
        stream_id: str | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            completion_client: Client for the completion endpoint
            directory: Source of the tools offered in this exchange
            invoker: Executes requested tool calls
            settings: Completion settings for this exchange
            turns: Conversation so far, ending with the user's turn
            stream_id: Correlation id; generated when not given
        """
        self.completion_client = completion_client
        self.invoker = invoker
        self.settings = settings
        self.stream_id = stream_id or new_stream_id()
        self.state = TurnState.REQUESTING
        self.rounds = 0
        self.requests_sent = 0
        self.error: str | None = None
        self.strategy: ToolCallingStrategy = create_strategy(
            settings.tool_calling_mode, directory.all_tools()
        )
        self.turns = self._initial_turns(turns)

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    @property
    def streaming_state(self) -> TurnState:
        if self.strategy.mode is ToolCallingMode.NATIVE:
            return TurnState.STREAMING_NATIVE
        return TurnState.STREAMING_PROMPT

    def transition(self, to: TurnState) -> None:
        """Move to a new state.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        current = self.state
        if current in _TERMINAL_STATES:
            raise InvalidTransitionError(f"Cannot transition from terminal state {current.value}")
        # FAILED is reachable from every non-terminal state
        if to is not TurnState.FAILED and to not in _VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(f"Invalid transition: {current.value} -> {to.value}")
        logger.debug(f"[{self.stream_id}] {current.value} -> {to.value}")
        self.state = to

    def _initial_turns(self, turns: list[ConversationTurn]) -> list[ConversationTurn]:
        # Turns carrying an error annotation belong to failed exchanges
        context = [turn for turn in turns if turn.error is None]
        instructions = self.strategy.system_instructions()

        if context and context[0].role is TurnRole.SYSTEM:
            if instructions:
                first = context[0]
                context[0] = replace(first, content=f"{first.content}\n\n{instructions}")
            return context

        system_text = "\n\n".join(
            part for part in (self.settings.system_prompt, instructions) if part
        )
        if system_text:
            context.insert(0, ConversationTurn(role=TurnRole.SYSTEM, content=system_text))
        return context

    async def run(self) -> AsyncIterator[Notification]:
        """Run the exchange, yielding notifications.

        Yields StreamChunk notifications in stream order followed by exactly
        one StreamCompleted or StreamFailed.
        """
        if self.state is not TurnState.REQUESTING:
            raise InvalidTransitionError(f"Exchange {self.stream_id} has already run")

        detect = self.settings.max_tool_rounds > 0
        assistant: ConversationTurn | None = None
        try:
            while True:
                assistant = ConversationTurn(role=TurnRole.ASSISTANT)
                async with aclosing(self._stream_round(assistant, detect)) as texts:
                    async for text in texts:
                        yield StreamChunk(self.stream_id, text)

                calls = self.strategy.extract(assistant) if detect else []
                if not calls:
                    self.transition(TurnState.COMPLETED)
                    logger.info(
                        f"[{self.stream_id}] Completed after {self.requests_sent} "
                        f"request(s), {self.rounds} tool round(s)"
                    )
                    yield StreamCompleted(self.stream_id)
                    return

                self.transition(TurnState.EXECUTING_TOOLS)
                self.strategy.annotate_assistant_turn(assistant, calls)
                results: list[ToolCallResult] = []
                for call in calls:
                    logger.info(f"[{self.stream_id}] Calling {call.server_id}/{call.tool_name}")
                    results.append(await self.invoker.call(call))
                self.turns.extend(self.strategy.result_turns(calls, results))
                self.rounds += 1

                if self.rounds >= self.settings.max_tool_rounds:
                    logger.info(
                        f"[{self.stream_id}] Reached {self.rounds} tool round(s), "
                        f"requesting a final answer"
                    )
                    self.turns.append(
                        ConversationTurn(role=TurnRole.USER, content=FINAL_ANSWER_INSTRUCTION)
                    )
                    detect = False
        except Exception as e:
            self.error = str(e) or type(e).__name__
            logger.error(f"[{self.stream_id}] Exchange failed: {self.error}")
            if assistant is not None:
                assistant.error = self.error
            self.transition(TurnState.FAILED)
            yield StreamFailed(self.stream_id, self.error)

    async def _stream_round(
        self, assistant: ConversationTurn, detect: bool
    ) -> AsyncIterator[str]:
        """Issue one request and yield the display text of its response.

        The assistant turn is appended to the conversation before the first
        chunk arrives and extended as the raw text streams in.
        """
        tools = self.strategy.request_tools() if detect else None
        payload = self.completion_client.build_request(self.settings, self.turns, tools=tools)
        self.requests_sent += 1
        self.strategy.start_round()
        self.turns.append(assistant)

        stream = self.completion_client.stream_completion(self.settings, payload)
        async with aclosing(stream):
            async for delta in decode_stream(stream):
                self._enter_streaming()
                if delta.content:
                    assistant.content += delta.content
                text = self.strategy.observe(delta)
                if text:
                    yield text
        self._enter_streaming()

        tail = self.strategy.finish()
        if tail:
            yield tail

    def _enter_streaming(self) -> None:
        if self.state is not self.streaming_state:
            self.transition(self.streaming_state)
