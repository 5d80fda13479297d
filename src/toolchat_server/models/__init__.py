"""Pydantic models for API request and response schemas.

This package contains all Pydantic models used for validating and
serializing API requests and responses across all endpoints.
"""

from toolchat_server.models.chat import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    ImageAttachment,
    LLMSettings,
    SendChatMessage,
)
from toolchat_server.models.health import HealthResponse
from toolchat_server.models.models import ModelDetail, ModelListResponse
from toolchat_server.models.servers import (
    ResourceReadResponse,
    ServerConfigRequest,
    ServerListResponse,
    ServerStateResponse,
    ToolListItem,
    ToolListResponse,
)

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChunkEvent",
    "CompleteEvent",
    "ErrorEvent",
    "ImageAttachment",
    "LLMSettings",
    "SendChatMessage",
    "HealthResponse",
    "ModelDetail",
    "ModelListResponse",
    "ResourceReadResponse",
    "ServerConfigRequest",
    "ServerListResponse",
    "ServerStateResponse",
    "ToolListItem",
    "ToolListResponse",
]
