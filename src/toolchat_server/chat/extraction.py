"""Tool-calling strategies: how tools are offered and how calls are found.

Two strategies share one interface so that the orchestrator only chooses
between them once per exchange:

- NativeToolCalling offers tools through the endpoint's ``tools``
  parameter and assembles calls from structured ``tool_calls`` deltas.
- PromptToolCalling describes the tools in the system prompt and parses
  tagged ``<tool_call>`` blocks out of the generated text, filtering them
  from the displayed stream.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from toolchat_server.chat.display import CLOSE_TAG, OPEN_TAG, DisplayFilter
from toolchat_server.llm.stream import (
    FINISH_TOOL_CALLS,
    StreamDelta,
    ToolCallAccumulator,
)
from toolchat_server.llm.types import ConversationTurn, ToolCallingMode, TurnRole
from toolchat_server.mcp.types import ToolCallRequest, ToolCallResult, ToolDescriptor

logger = logging.getLogger(__name__)

FUNCTION_NAME_PREFIX = "mcp_"
MAX_FUNCTION_NAME_LENGTH = 64
_INVALID_FUNCTION_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

# A block runs from the last opening tag before a closing tag, so an
# unterminated opener earlier in the text cannot swallow a valid block.
_BLOCK_PATTERN = re.compile(
    re.escape(OPEN_TAG)
    + r"((?:(?!"
    + re.escape(OPEN_TAG)
    + r").)*?)"
    + re.escape(CLOSE_TAG),
    re.DOTALL,
)

CONTINUE_INSTRUCTION = (
    "You may call more tools if you need further information, "
    "or provide your final answer to the user."
)

FINAL_ANSWER_INSTRUCTION = (
    "You have reached the maximum number of tool calls for this request. "
    "Do not call any more tools. Provide your final answer to the user now, "
    "based on the information you already have."
)


def function_name(server_id: str, tool_name: str) -> str:
    """Build the function name a tool is offered under in native mode."""
    name = _INVALID_FUNCTION_CHARS.sub("_", f"{FUNCTION_NAME_PREFIX}{server_id}_{tool_name}")
    return name[:MAX_FUNCTION_NAME_LENGTH]


def format_tool_result(request: ToolCallRequest, result: ToolCallResult) -> str:
    """Render a tool result as text for the model."""
    if result.success:
        payload = json.dumps(result.content, ensure_ascii=False, separators=(",", ":"), default=str)
        return f"Tool {request.tool_name} on {request.server_id} returned: {payload}"
    return f"Tool {request.tool_name} on {request.server_id} failed: {result.error}"


def _field(block: str, name: str) -> str | None:
    match = re.search(rf"<{name}>(.*?)</{name}>", block, re.DOTALL)
    return match.group(1).strip() if match else None


def parse_tool_call_blocks(text: str) -> list[ToolCallRequest]:
    """Extract every well-formed tool-call block from text, in order.

    A block needs server_id, tool_name and arguments fields, and the
    arguments must be a JSON object. Malformed blocks are skipped one by one.
    """
    requests = []
    for match in _BLOCK_PATTERN.finditer(text):
        block = match.group(1)
        server_id = _field(block, "server_id")
        tool_name = _field(block, "tool_name")
        raw_arguments = _field(block, "arguments")
        if not server_id or not tool_name or raw_arguments is None:
            logger.warning(f"Skipping tool call block with missing fields: {block[:200]}")
            continue
        try:
            arguments = json.loads(raw_arguments) if raw_arguments else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping tool call block with invalid arguments: {e}")
            continue
        if not isinstance(arguments, dict):
            logger.warning(f"Skipping tool call block, arguments are not an object: {raw_arguments[:200]}")
            continue
        requests.append(
            ToolCallRequest(server_id=server_id, tool_name=tool_name, arguments=arguments)
        )
    return requests


def describe_tool(tool: ToolDescriptor) -> str:
    """Describe one tool and its parameters for the system prompt."""
    lines = [f"- {tool.name}: {tool.description or 'No description'}"]
    params = tool.parameters
    if params:
        lines.append("  Parameters:")
    for param in params.values():
        qualifiers = [param.type]
        if param.required:
            qualifiers.append("required")
        if param.enum:
            qualifiers.append("one of: " + ", ".join(str(value) for value in param.enum))
        line = f"  - {param.name} ({', '.join(qualifiers)})"
        if param.description:
            line += f": {param.description}"
        lines.append(line)
    return "\n".join(lines)


class ToolCallingStrategy(ABC):
    """Common interface of the two tool-calling modes.

    A strategy lives for one exchange. start_round() resets its per-round
    state; observe() receives every stream delta and returns the text to
    display; extract() returns the calls requested in the finished round.
    """

    mode: ToolCallingMode

    def __init__(self, tools: list[tuple[str, ToolDescriptor]]) -> None:
        self.tools = tools

    def request_tools(self) -> list[dict[str, Any]] | None:
        """Function definitions to send with the request, if any."""
        return None

    def system_instructions(self) -> str | None:
        """Text to add to the system prompt, if any."""
        return None

    @abstractmethod
    def start_round(self) -> None: ...

    @abstractmethod
    def observe(self, delta: StreamDelta) -> str: ...

    def finish(self) -> str:
        """Return display text still held back when the stream ends."""
        return ""

    @abstractmethod
    def extract(self, turn: ConversationTurn) -> list[ToolCallRequest]: ...

    def annotate_assistant_turn(
        self, turn: ConversationTurn, calls: list[ToolCallRequest]
    ) -> None:
        """Record the requested calls on the assistant turn for the model."""

    @abstractmethod
    def result_turns(
        self, calls: list[ToolCallRequest], results: list[ToolCallResult]
    ) -> list[ConversationTurn]: ...


class NativeToolCalling(ToolCallingStrategy):
    """Tools offered via the request's tools array, calls via tool_calls."""

    mode = ToolCallingMode.NATIVE

    def __init__(self, tools: list[tuple[str, ToolDescriptor]]) -> None:
        super().__init__(tools)
        self._targets: dict[str, tuple[str, str]] = {}
        self._names: dict[tuple[str, str], str] = {}
        for server_id, tool in tools:
            name = function_name(server_id, tool.name)
            self._targets[name] = (server_id, tool.name)
            self._names[(server_id, tool.name)] = name
        self.start_round()

    def request_tools(self) -> list[dict[str, Any]] | None:
        if not self.tools:
            return None
        return [
            {
                "type": "function",
                "function": {
                    "name": self._names[(server_id, tool.name)],
                    "description": tool.description,
                    "parameters": tool.input_schema or {"type": "object", "properties": {}},
                },
            }
            for server_id, tool in self.tools
        ]

    def start_round(self) -> None:
        self._accumulator = ToolCallAccumulator()
        self._finish_reason: str | None = None

    def observe(self, delta: StreamDelta) -> str:
        for fragment in delta.tool_calls:
            self._accumulator.add(fragment)
        if delta.finish_reason:
            self._finish_reason = delta.finish_reason
        return delta.content or ""

    def _resolve(self, name: str) -> tuple[str, str] | None:
        target = self._targets.get(name)
        if target is not None:
            return target
        # Unknown name: fall back to the mcp_{server}_{tool} convention
        if name.startswith(FUNCTION_NAME_PREFIX):
            server_id, _, tool_name = name[len(FUNCTION_NAME_PREFIX) :].partition("_")
            if server_id and tool_name:
                return server_id, tool_name
        return None

    def extract(self, turn: ConversationTurn) -> list[ToolCallRequest]:
        if self._finish_reason != FINISH_TOOL_CALLS:
            return []

        requests = []
        for call in self._accumulator.calls():
            target = self._resolve(call.name)
            if target is None:
                logger.warning(f"Skipping tool call to unknown function {call.name!r}")
                continue
            try:
                arguments = json.loads(call.arguments) if call.arguments.strip() else {}
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping tool call {call.name} with invalid arguments: {e}")
                continue
            if not isinstance(arguments, dict):
                logger.warning(f"Skipping tool call {call.name}, arguments are not an object")
                continue
            server_id, tool_name = target
            requests.append(
                ToolCallRequest(
                    server_id=server_id,
                    tool_name=tool_name,
                    arguments=arguments,
                    call_id=call.id or f"call_{call.index}",
                )
            )
        return requests

    def annotate_assistant_turn(
        self, turn: ConversationTurn, calls: list[ToolCallRequest]
    ) -> None:
        turn.tool_calls = [
            {
                "id": call.call_id,
                "type": "function",
                "function": {
                    "name": self._names.get(
                        (call.server_id, call.tool_name),
                        function_name(call.server_id, call.tool_name),
                    ),
                    "arguments": json.dumps(call.arguments, ensure_ascii=False),
                },
            }
            for call in calls
        ]

    def result_turns(
        self, calls: list[ToolCallRequest], results: list[ToolCallResult]
    ) -> list[ConversationTurn]:
        turns = []
        for call, result in zip(calls, results):
            if result.success:
                content = json.dumps(
                    result.content, ensure_ascii=False, separators=(",", ":"), default=str
                )
            else:
                content = f"Error: {result.error}"
            turns.append(
                ConversationTurn(
                    role=TurnRole.TOOL_RESULT,
                    content=content,
                    tool_call_id=call.call_id,
                )
            )
        return turns


class PromptToolCalling(ToolCallingStrategy):
    """Tools described in the system prompt, calls as tagged text blocks."""

    mode = ToolCallingMode.PROMPT

    def __init__(self, tools: list[tuple[str, ToolDescriptor]]) -> None:
        super().__init__(tools)
        self.start_round()

    def system_instructions(self) -> str | None:
        if not self.tools:
            return None

        by_server: dict[str, list[ToolDescriptor]] = {}
        for server_id, tool in self.tools:
            by_server.setdefault(server_id, []).append(tool)

        catalog = []
        for server_id, tools in by_server.items():
            catalog.append(f"Server: {server_id}")
            catalog.extend(describe_tool(tool) for tool in tools)
            catalog.append("")

        return (
            "You have access to tools provided by connected tool servers. "
            "To call a tool, write a block in exactly this format:\n\n"
            f"{OPEN_TAG}\n"
            "<server_id>SERVER_ID</server_id>\n"
            "<tool_name>TOOL_NAME</tool_name>\n"
            '<arguments>{"parameter": "value"}</arguments>\n'
            f"{CLOSE_TAG}\n\n"
            "Rules:\n"
            "- The arguments must be a valid JSON object.\n"
            "- You may call several tools by writing several blocks.\n"
            "- After writing tool calls, stop and wait: the results will be "
            "sent to you in the next message.\n"
            "- If no tool is needed, answer directly.\n\n"
            "Available tools:\n\n" + "\n".join(catalog).rstrip()
        )

    def start_round(self) -> None:
        self._display = DisplayFilter()

    def observe(self, delta: StreamDelta) -> str:
        if not delta.content:
            return ""
        return self._display.feed(delta.content)

    def finish(self) -> str:
        return self._display.flush()

    def extract(self, turn: ConversationTurn) -> list[ToolCallRequest]:
        return parse_tool_call_blocks(turn.content)

    def result_turns(
        self, calls: list[ToolCallRequest], results: list[ToolCallResult]
    ) -> list[ConversationTurn]:
        lines = [format_tool_result(call, result) for call, result in zip(calls, results)]
        content = "Tool results:\n\n" + "\n\n".join(lines) + "\n\n" + CONTINUE_INSTRUCTION
        return [ConversationTurn(role=TurnRole.TOOL_RESULT, content=content)]


def create_strategy(
    mode: ToolCallingMode, tools: list[tuple[str, ToolDescriptor]]
) -> ToolCallingStrategy:
    """Select the strategy for an exchange."""
    if mode is ToolCallingMode.NATIVE:
        return NativeToolCalling(tools)
    return PromptToolCalling(tools)
