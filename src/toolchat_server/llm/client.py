"""Async client for OpenAI-compatible chat completion endpoints.

This module builds chat completion requests from conversation turns and
streams the raw response body back to the caller. Decoding the stream is
left to toolchat_server.llm.stream so that the orchestrator sees the bytes
exactly as they arrive.
"""

import logging
import re
from typing import Any, AsyncIterator

import httpx

from toolchat_server.errors import CompletionError
from toolchat_server.llm.types import (
    CompletionSettings,
    ConversationTurn,
    LLMProvider,
    TurnRole,
)

logger = logging.getLogger(__name__)

APP_TITLE = "toolchat-server"
APP_REFERER = "http://localhost"

_CHAT_COMPLETIONS_SUFFIX = re.compile(r"/chat/completions/?$")


def models_url(api_endpoint: str) -> str:
    """Derive the model listing URL from a chat completion endpoint."""
    return _CHAT_COMPLETIONS_SUFFIX.sub("/models", api_endpoint)


def turn_to_wire(turn: ConversationTurn) -> dict[str, Any]:
    """Convert a conversation turn to the endpoint's message format.

    Turns with attached images use the content-parts format. Tool-result
    turns become 'tool' messages when they answer a structured call and
    plain user messages otherwise.
    """
    if turn.role is TurnRole.TOOL_RESULT:
        if turn.tool_call_id:
            return {
                "role": "tool",
                "tool_call_id": turn.tool_call_id,
                "content": turn.content,
            }
        return {"role": "user", "content": turn.content}

    message: dict[str, Any] = {"role": turn.role.value}
    if turn.images:
        parts: list[dict[str, Any]] = []
        if turn.content:
            parts.append({"type": "text", "text": turn.content})
        for image in turn.images:
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": image.data, "detail": "auto"},
                }
            )
        message["content"] = parts
    else:
        message["content"] = turn.content

    if turn.tool_calls:
        message["tool_calls"] = turn.tool_calls
        if not turn.content:
            message["content"] = None
    return message


class CompletionClient:
    """Async client for a chat completion endpoint.

    The client is created once at startup and shared by all exchanges; the
    endpoint, model and key travel with each request's CompletionSettings.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ) -> None:
        """Initialize the completion client.

        Args:
            http_client: Optional preconfigured httpx client (used by tests)
            timeout: Read timeout in seconds when creating a client
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0)
        )

    def build_headers(self, settings: CompletionSettings) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.api_key}",
        }
        if settings.provider is LLMProvider.OPENROUTER:
            headers["HTTP-Referer"] = APP_REFERER
            headers["X-Title"] = APP_TITLE
        return headers

    def build_request(
        self,
        settings: CompletionSettings,
        turns: list[ConversationTurn],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Build the JSON request body.

        Args:
            settings: Completion settings for the exchange
            turns: The full ordered conversation
            tools: Function definitions offered to the model (native mode only)

        Returns:
            dict: The request body
        """
        payload: dict[str, Any] = {
            "model": settings.model,
            "messages": [turn_to_wire(turn) for turn in turns],
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    async def stream_completion(
        self,
        settings: CompletionSettings,
        payload: dict[str, Any],
    ) -> AsyncIterator[bytes]:
        """Send a streaming request and yield the raw response body chunks.

        Raises:
            CompletionError: On a non-success status or a transport failure
        """
        logger.debug(
            f"Streaming completion from {settings.api_endpoint} with model "
            f"{settings.model} ({len(payload.get('messages', []))} messages, "
            f"{len(payload.get('tools', []))} tools)"
        )
        try:
            async with self._client.stream(
                "POST",
                settings.api_endpoint,
                json=payload,
                headers=self.build_headers(settings),
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise CompletionError(
                        f"API error: {response.status_code} - {body}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Completion request failed: {e}")
            raise CompletionError(f"Completion request failed: {e}") from e

        logger.debug("Completion stream ended")

    async def list_models(self, settings: CompletionSettings) -> list[str]:
        """List the model ids offered by the endpoint.

        The models URL is derived from the completion endpoint by replacing
        its trailing /chat/completions with /models.

        Args:
            settings: Completion settings naming the endpoint and credentials

        Returns:
            list[str]: Sorted, non-empty model ids

        Raises:
            CompletionError: On a failed request or an unexpected response shape
        """
        url = models_url(settings.api_endpoint)
        headers = self.build_headers(settings)
        headers.pop("Content-Type")
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Model listing request failed: {e}")
            raise CompletionError(f"Failed to fetch models: {e}") from e

        if not response.is_success:
            raise CompletionError(
                f"Failed to fetch models: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json().get("data")
        except (ValueError, AttributeError) as e:
            raise CompletionError("Invalid models response format") from e
        if not isinstance(data, list):
            raise CompletionError("Invalid models response format")

        model_ids = sorted(
            model["id"]
            for model in data
            if isinstance(model, dict)
            and isinstance(model.get("id"), str)
            and model["id"].strip()
        )
        logger.debug(f"Listed {len(model_ids)} models from {url}")
        return model_ids

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
        logger.debug("CompletionClient closed")
