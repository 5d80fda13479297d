"""Chat turn orchestration with tool calling."""

from toolchat_server.chat.display import DisplayFilter, strip_tool_calls
from toolchat_server.chat.extraction import (
    FINAL_ANSWER_INSTRUCTION,
    NativeToolCalling,
    PromptToolCalling,
    ToolCallingStrategy,
    create_strategy,
    format_tool_result,
    function_name,
    parse_tool_call_blocks,
)
from toolchat_server.chat.orchestrator import (
    Notification,
    StreamChunk,
    StreamCompleted,
    StreamFailed,
    TurnOrchestrator,
    TurnState,
    new_stream_id,
)

__all__ = [
    "DisplayFilter",
    "strip_tool_calls",
    "FINAL_ANSWER_INSTRUCTION",
    "NativeToolCalling",
    "PromptToolCalling",
    "ToolCallingStrategy",
    "create_strategy",
    "format_tool_result",
    "function_name",
    "parse_tool_call_blocks",
    "Notification",
    "StreamChunk",
    "StreamCompleted",
    "StreamFailed",
    "TurnOrchestrator",
    "TurnState",
    "new_stream_id",
]
