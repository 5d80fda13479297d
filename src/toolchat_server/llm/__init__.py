"""Completion endpoint client and stream decoding.

This package talks to OpenAI-compatible chat completion endpoints and turns
their streamed responses into structured deltas.
"""

from toolchat_server.llm.client import CompletionClient, turn_to_wire
from toolchat_server.llm.stream import (
    FINISH_TOOL_CALLS,
    AccumulatedToolCall,
    StreamDecoder,
    StreamDelta,
    ToolCallAccumulator,
    ToolCallFragment,
    decode_stream,
)
from toolchat_server.llm.types import (
    CompletionSettings,
    ConversationTurn,
    LLMProvider,
    MediaAttachment,
    ToolCallingMode,
    TurnRole,
)

__all__ = [
    "CompletionClient",
    "turn_to_wire",
    "FINISH_TOOL_CALLS",
    "AccumulatedToolCall",
    "StreamDecoder",
    "StreamDelta",
    "ToolCallAccumulator",
    "ToolCallFragment",
    "decode_stream",
    "CompletionSettings",
    "ConversationTurn",
    "LLMProvider",
    "MediaAttachment",
    "ToolCallingMode",
    "TurnRole",
]
