"""Chat API endpoints.

This module provides the caller channels for chat exchanges: a non-streaming
endpoint, an SSE streaming endpoint, and a long-lived WebSocket channel on
which several exchanges may run at once. Every exchange is driven by a
TurnOrchestrator; closing the channel stops it.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from toolchat_server.chat import (
    Notification,
    StreamChunk,
    StreamCompleted,
    StreamFailed,
    TurnOrchestrator,
    new_stream_id,
)
from toolchat_server.config import ToolchatSettings
from toolchat_server.dependencies import get_completion_client, get_directory, get_invoker
from toolchat_server.llm import CompletionClient
from toolchat_server.mcp import ToolDirectory, ToolInvoker
from toolchat_server.models.chat import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChunkEvent,
    CompleteEvent,
    ErrorEvent,
    LLMSettings,
    SendChatMessage,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


def _create_orchestrator(
    settings: ToolchatSettings,
    completion_client: CompletionClient,
    directory: ToolDirectory,
    invoker: ToolInvoker,
    messages: list[ChatMessage],
    overrides: LLMSettings | None,
    stream_id: str | None,
) -> TurnOrchestrator:
    completion_settings = settings.completion_defaults()
    if overrides is not None:
        completion_settings = overrides.apply(completion_settings)
    return TurnOrchestrator(
        completion_client=completion_client,
        directory=directory,
        invoker=invoker,
        settings=completion_settings,
        turns=[message.to_turn() for message in messages],
        stream_id=stream_id,
    )


def _sse_event(notification: Notification) -> dict[str, str]:
    """Convert an orchestrator notification to an SSE event."""
    if isinstance(notification, StreamChunk):
        event = ChunkEvent(stream_id=notification.stream_id, chunk=notification.chunk)
        return {"event": "chunk", "data": event.model_dump_json()}
    if isinstance(notification, StreamCompleted):
        event = CompleteEvent(stream_id=notification.stream_id)
        return {"event": "complete", "data": event.model_dump_json()}
    event = ErrorEvent(stream_id=notification.stream_id, error=notification.error)
    return {"event": "error", "data": event.model_dump_json()}


def _ws_message(notification: Notification) -> dict[str, Any]:
    """Convert an orchestrator notification to a WebSocket message."""
    if isinstance(notification, StreamChunk):
        return {
            "type": "chat_stream_chunk",
            "stream_id": notification.stream_id,
            "chunk": notification.chunk,
        }
    if isinstance(notification, StreamCompleted):
        return {"type": "chat_stream_end", "stream_id": notification.stream_id}
    return {
        "type": "chat_stream_error",
        "stream_id": notification.stream_id,
        "error": notification.error,
    }


@router.post("", response_model=ChatResponse)
async def chat_non_streaming(
    request_body: ChatRequest,
    request: Request,
    completion_client: CompletionClient = Depends(get_completion_client),
    directory: ToolDirectory = Depends(get_directory),
    invoker: ToolInvoker = Depends(get_invoker),
) -> ChatResponse:
    """Run an exchange to completion and return the full answer.

    Tool calls are executed exactly as in the streaming endpoint; only the
    display text of the answer is returned.

    Raises:
        HTTPException: 502 if the completion endpoint fails
    """
    orchestrator = _create_orchestrator(
        request.app.state.settings,
        completion_client,
        directory,
        invoker,
        request_body.messages,
        request_body.settings,
        request_body.stream_id,
    )

    chunks = []
    async with aclosing(orchestrator.run()) as notifications:
        async for notification in notifications:
            if isinstance(notification, StreamChunk):
                chunks.append(notification.chunk)
            elif isinstance(notification, StreamFailed):
                raise HTTPException(
                    status_code=502,
                    detail={
                        "error": {
                            "code": "completion_error",
                            "message": f"Failed to get response: {notification.error}",
                            "details": {"stream_id": orchestrator.stream_id},
                        }
                    },
                )

    return ChatResponse(
        stream_id=orchestrator.stream_id,
        content="".join(chunks),
        requests=orchestrator.requests_sent,
        tool_rounds=orchestrator.rounds,
    )


@router.post("/stream")
async def chat_streaming(
    request_body: ChatRequest,
    request: Request,
    completion_client: CompletionClient = Depends(get_completion_client),
    directory: ToolDirectory = Depends(get_directory),
    invoker: ToolInvoker = Depends(get_invoker),
) -> EventSourceResponse:
    """Stream an exchange via Server-Sent Events (SSE).

    SSE Events:
        - chunk: Display-ready text, in order
        - complete: The exchange finished normally
        - error: The exchange failed

    Exactly one of complete or error ends the stream. If the client
    disconnects, no further completion requests or tool calls are made.
    """
    orchestrator = _create_orchestrator(
        request.app.state.settings,
        completion_client,
        directory,
        invoker,
        request_body.messages,
        request_body.settings,
        request_body.stream_id,
    )
    logger.info(
        f"Starting streaming exchange {orchestrator.stream_id} with "
        f"{len(request_body.messages)} messages"
    )

    async def event_generator():
        """Generate SSE events from the orchestrator's notifications."""
        async with aclosing(orchestrator.run()) as notifications:
            async for notification in notifications:
                if await request.is_disconnected():
                    logger.warning(
                        f"Client disconnected during exchange {orchestrator.stream_id}"
                    )
                    break
                yield _sse_event(notification)

    return EventSourceResponse(event_generator())


async def _relay(
    orchestrator: TurnOrchestrator,
    send: Callable[[dict[str, Any]], Awaitable[None]],
    stream: bool,
    is_closed: Callable[[], bool],
) -> None:
    """Forward one exchange's notifications over the WebSocket.

    Without streaming, the chunks are collected and sent as a single chunk
    right before the end message. The relay stops quietly once the socket is
    closed; any other failure is logged as an error.
    """
    chunks = []
    try:
        async with aclosing(orchestrator.run()) as notifications:
            async for notification in notifications:
                if isinstance(notification, StreamChunk) and not stream:
                    chunks.append(notification.chunk)
                    continue
                if isinstance(notification, StreamCompleted) and not stream:
                    collected = StreamChunk(orchestrator.stream_id, "".join(chunks))
                    await send(_ws_message(collected))
                await send(_ws_message(notification))
    except WebSocketDisconnect as e:
        logger.info(f"Stopped relaying exchange {orchestrator.stream_id}: {e}")
    except RuntimeError as e:
        if not is_closed():
            logger.exception(f"Relaying exchange {orchestrator.stream_id} failed: {e}")
            return
        # Starlette raises RuntimeError when sending after the close message
        logger.info(f"Stopped relaying exchange {orchestrator.stream_id}: {e}")


@router.websocket("/ws")
async def chat_websocket(websocket: WebSocket) -> None:
    """Long-lived chat channel.

    Client sends::

        {"type": "send_chat_message", "stream_id": "...",
         "messages": [...], "settings": {...}, "stream": true}

    Server sends, per exchange::

        {"type": "chat_stream_chunk", "stream_id": "...", "chunk": "..."}
        {"type": "chat_stream_end", "stream_id": "..."}
        {"type": "chat_stream_error", "stream_id": "...", "error": "..."}

    Exchanges run concurrently and are told apart by stream_id. When the
    client disconnects, every running exchange is cancelled.
    """
    await websocket.accept()
    state = websocket.app.state
    tasks: dict[str, asyncio.Task[None]] = {}
    send_lock = asyncio.Lock()

    async def send(payload: dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(payload)

    def is_closed() -> bool:
        return WebSocketState.DISCONNECTED in (
            websocket.client_state,
            websocket.application_state,
        )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                data = None
            try:
                message = SendChatMessage.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Rejected WebSocket message: {e}")
                stream_id = data.get("stream_id") if isinstance(data, dict) else None
                await send(
                    {
                        "type": "chat_stream_error",
                        "stream_id": stream_id,
                        "error": "Invalid message",
                    }
                )
                continue

            stream_id = message.stream_id or new_stream_id()
            if stream_id in tasks:
                await send(
                    {
                        "type": "chat_stream_error",
                        "stream_id": stream_id,
                        "error": f"Stream {stream_id} is already running",
                    }
                )
                continue

            orchestrator = _create_orchestrator(
                state.settings,
                state.completion_client,
                state.directory,
                state.invoker,
                message.messages,
                message.settings,
                stream_id,
            )
            logger.info(f"Starting WebSocket exchange {stream_id}")
            task = asyncio.create_task(_relay(orchestrator, send, message.stream, is_closed))
            tasks[stream_id] = task
            task.add_done_callback(lambda _task, key=stream_id: tasks.pop(key, None))

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected, cancelling {len(tasks)} exchange(s)")
    finally:
        pending = list(tasks.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
