"""Unit tests for relaying exchanges over the WebSocket channel."""

import logging
from unittest.mock import MagicMock

import pytest
from fastapi import WebSocketDisconnect

from toolchat_server.chat import StreamChunk, StreamCompleted
from toolchat_server.routers.chat import _relay


def _orchestrator(*notifications):
    """Create an orchestrator double replaying the given notifications."""

    async def run():
        for notification in notifications:
            yield notification

    orchestrator = MagicMock()
    orchestrator.stream_id = "s1"
    orchestrator.run = run
    return orchestrator


@pytest.mark.asyncio
async def test_relay_forwards_notifications():
    sent = []

    async def send(payload):
        sent.append(payload)

    orchestrator = _orchestrator(StreamChunk("s1", "Hi"), StreamCompleted("s1"))

    await _relay(orchestrator, send, stream=True, is_closed=lambda: False)

    assert sent == [
        {"type": "chat_stream_chunk", "stream_id": "s1", "chunk": "Hi"},
        {"type": "chat_stream_end", "stream_id": "s1"},
    ]


@pytest.mark.asyncio
async def test_relay_collects_chunks_without_streaming():
    sent = []

    async def send(payload):
        sent.append(payload)

    orchestrator = _orchestrator(
        StreamChunk("s1", "Hello"), StreamChunk("s1", " there"), StreamCompleted("s1")
    )

    await _relay(orchestrator, send, stream=False, is_closed=lambda: False)

    assert sent == [
        {"type": "chat_stream_chunk", "stream_id": "s1", "chunk": "Hello there"},
        {"type": "chat_stream_end", "stream_id": "s1"},
    ]


@pytest.mark.asyncio
async def test_relay_stops_quietly_on_disconnect(caplog):
    async def send(payload):
        raise WebSocketDisconnect(code=1001)

    with caplog.at_level(logging.INFO, logger="toolchat_server.routers.chat"):
        await _relay(
            _orchestrator(StreamChunk("s1", "Hi")), send, stream=True, is_closed=lambda: True
        )

    assert "Stopped relaying exchange s1" in caplog.text
    assert not [record for record in caplog.records if record.levelno >= logging.ERROR]


@pytest.mark.asyncio
async def test_relay_stops_quietly_on_send_after_close(caplog):
    async def send(payload):
        raise RuntimeError('Cannot call "send" once a close message has been sent.')

    with caplog.at_level(logging.INFO, logger="toolchat_server.routers.chat"):
        await _relay(
            _orchestrator(StreamChunk("s1", "Hi")), send, stream=True, is_closed=lambda: True
        )

    assert "Stopped relaying exchange s1" in caplog.text
    assert not [record for record in caplog.records if record.levelno >= logging.ERROR]


@pytest.mark.asyncio
async def test_relay_logs_unexpected_runtime_error(caplog):
    async def run():
        yield StreamChunk("s1", "Hi")
        raise RuntimeError("orchestrator bug")

    orchestrator = MagicMock()
    orchestrator.stream_id = "s1"
    orchestrator.run = run
    sent = []

    async def send(payload):
        sent.append(payload)

    with caplog.at_level(logging.INFO, logger="toolchat_server.routers.chat"):
        await _relay(orchestrator, send, stream=True, is_closed=lambda: False)

    errors = [record for record in caplog.records if record.levelno >= logging.ERROR]
    assert len(errors) == 1
    assert "Relaying exchange s1 failed: orchestrator bug" in errors[0].getMessage()
    assert "Stopped relaying" not in caplog.text
    assert len(sent) == 1
