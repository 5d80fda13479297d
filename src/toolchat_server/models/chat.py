"""Pydantic models for chat API requests, responses and stream events.

This module defines the request and response schemas for the chat endpoints:
the non-streaming endpoint, the SSE streaming endpoint and the WebSocket
channel all accept the same conversation and settings shapes.
"""

from dataclasses import replace
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from toolchat_server.llm.types import (
    CompletionSettings,
    ConversationTurn,
    LLMProvider,
    MediaAttachment,
    ToolCallingMode,
    TurnRole,
)


class ImageAttachment(BaseModel):
    """An image attached to a message, as a base64 data URL."""

    data: str = Field(description="Data URL, e.g. data:image/png;base64,...")
    mime_type: str = Field(default="image/png")
    name: str | None = Field(default=None)


class ChatMessage(BaseModel):
    """One turn of the conversation supplied by the caller."""

    role: TurnRole = Field(description="system, user, assistant or tool-result")
    content: str = Field(default="")
    images: list[ImageAttachment] = Field(default_factory=list)
    error: str | None = Field(
        default=None,
        description="Error annotation of a failed exchange; such turns are not sent to the model",
    )

    def to_turn(self) -> ConversationTurn:
        return ConversationTurn(
            role=self.role,
            content=self.content,
            images=[
                MediaAttachment(data=image.data, mime_type=image.mime_type, name=image.name)
                for image in self.images
            ],
            error=self.error,
        )


class LLMSettings(BaseModel):
    """Per-exchange overrides of the server's completion defaults.

    Every field is optional; unset fields fall back to the server settings.
    """

    provider: LLMProvider | None = None
    api_endpoint: str | None = None
    api_key: str | None = None
    model: str | None = None
    system_prompt: str | None = None
    tool_calling_mode: ToolCallingMode | None = None
    max_tool_rounds: int | None = Field(default=None, ge=0)

    def apply(self, defaults: CompletionSettings) -> CompletionSettings:
        """Return the defaults with every set field overridden."""
        overrides = self.model_dump(exclude_none=True)
        return replace(defaults, **overrides)


class ChatRequest(BaseModel):
    """Request body for POST /api/v1/chat and POST /api/v1/chat/stream."""

    messages: list[ChatMessage] = Field(
        min_length=1, description="The conversation, ending with the user's turn"
    )
    settings: LLMSettings | None = Field(default=None)
    stream_id: str | None = Field(
        default=None, description="Correlation id; generated when omitted"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "messages": [
                        {"role": "user", "content": "What's the weather in Paris?"}
                    ],
                    "settings": {"model": "gpt-4o", "tool_calling_mode": "native"},
                }
            ]
        }
    )


class ChatResponse(BaseModel):
    """Response body for the non-streaming chat endpoint."""

    stream_id: str = Field(description="Correlation id of the exchange")
    content: str = Field(description="The display text of the assistant's answer")
    requests: int = Field(description="Number of completion requests issued")
    tool_rounds: int = Field(description="Number of rounds of tool execution")


class ChunkEvent(BaseModel):
    """SSE 'chunk' event: display-ready text."""

    stream_id: str
    chunk: str


class CompleteEvent(BaseModel):
    """SSE 'complete' event: the exchange finished normally."""

    stream_id: str


class ErrorEvent(BaseModel):
    """SSE 'error' event: the exchange failed."""

    stream_id: str
    error: str


class SendChatMessage(BaseModel):
    """WebSocket message starting an exchange."""

    type: Literal["send_chat_message"]
    stream_id: str | None = None
    messages: list[ChatMessage] = Field(min_length=1)
    settings: LLMSettings | None = None
    stream: bool = True
