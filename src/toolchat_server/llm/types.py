"""Type definitions for the completion endpoint integration.

This module contains the conversation turn model sent to the completion
endpoint and the per-exchange completion settings.
"""

import enum
from dataclasses import dataclass, field
from typing import Any


class LLMProvider(str, enum.Enum):
    """Flavour of OpenAI-compatible completion endpoint."""

    OPENROUTER = "openrouter"
    OPENAI_COMPATIBLE = "openai_compatible"


class ToolCallingMode(str, enum.Enum):
    """How tools are offered to and requested by the model.

    NATIVE uses the endpoint's tools parameter and structured tool_calls
    deltas. PROMPT describes the tools in the system prompt and parses
    tagged blocks out of the generated text.
    """

    NATIVE = "native"
    PROMPT = "prompt"


class TurnRole(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool-result"


@dataclass
class MediaAttachment:
    """An image attached to a turn, as a base64 data URL."""

    data: str
    mime_type: str = "image/png"
    name: str | None = None


@dataclass
class ConversationTurn:
    """One turn of the conversation sent as request context.

    Attributes:
        role: Who produced the turn
        content: Text content; extended in place while an assistant turn streams
        images: Attached images (sent as image_url parts)
        error: Error annotation from a failed exchange
        tool_calls: Structured tool calls requested by an assistant turn
        tool_call_id: Structured call this tool-result turn answers
    """

    role: TurnRole
    content: str = ""
    images: list[MediaAttachment] = field(default_factory=list)
    error: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None


@dataclass
class CompletionSettings:
    """Settings for one exchange with the completion endpoint."""

    api_endpoint: str
    model: str
    api_key: str = ""
    provider: LLMProvider = LLMProvider.OPENAI_COMPATIBLE
    system_prompt: str | None = None
    tool_calling_mode: ToolCallingMode = ToolCallingMode.PROMPT
    max_tool_rounds: int = 5
