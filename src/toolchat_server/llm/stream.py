"""Incremental decoding of streamed chat completion responses.

The completion endpoint streams Server-Sent Events lines of the form
``data: {json}`` terminated by ``data: [DONE]``. Byte chunks may split
lines, and even UTF-8 sequences, at arbitrary points; the decoder carries
partial input over to the next chunk so that the produced deltas do not
depend on how the response was chunked.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

EVENT_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

# finish_reason announcing that the model wants tools to be called
FINISH_TOOL_CALLS = "tool_calls"


@dataclass(frozen=True)
class ToolCallFragment:
    """A piece of a structured tool call from one streamed record."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass(frozen=True)
class StreamDelta:
    """Everything one streamed record contributes."""

    content: str | None = None
    tool_calls: tuple[ToolCallFragment, ...] = ()
    finish_reason: str | None = None


@dataclass
class AccumulatedToolCall:
    """A structured tool call assembled from fragments."""

    index: int
    id: str | None = None
    name: str = ""
    arguments: str = ""

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ToolCallAccumulator:
    """Assembles structured tool calls from fragments, keyed by index.

    The first fragment for an index establishes the call's id and name;
    argument strings of that and every later fragment are concatenated.
    """

    def __init__(self) -> None:
        self._calls: dict[int, AccumulatedToolCall] = {}

    def add(self, fragment: ToolCallFragment) -> None:
        call = self._calls.get(fragment.index)
        if call is None:
            self._calls[fragment.index] = AccumulatedToolCall(
                index=fragment.index,
                id=fragment.id,
                name=fragment.name or "",
                arguments=fragment.arguments,
            )
            return
        if call.id is None and fragment.id:
            call.id = fragment.id
        if not call.name and fragment.name:
            call.name = fragment.name
        call.arguments += fragment.arguments

    def calls(self) -> list[AccumulatedToolCall]:
        """Return the assembled calls ordered by index."""
        return [self._calls[index] for index in sorted(self._calls)]

    def __len__(self) -> int:
        return len(self._calls)


def parse_record(payload: dict[str, Any]) -> StreamDelta:
    """Turn one parsed event payload into a StreamDelta."""
    choices = payload.get("choices") or []
    if not choices:
        return StreamDelta()
    choice = choices[0] or {}
    delta = choice.get("delta") or {}

    fragments = []
    for raw in delta.get("tool_calls") or []:
        function = raw.get("function") or {}
        fragments.append(
            ToolCallFragment(
                index=int(raw.get("index") or 0),
                id=raw.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments") or "",
            )
        )

    return StreamDelta(
        content=delta.get("content") or None,
        tool_calls=tuple(fragments),
        finish_reason=choice.get("finish_reason"),
    )


class StreamDecoder:
    """Turns raw response bytes into StreamDelta records.

    Feed chunks with feed() as they arrive and call close() once the
    underlying stream has ended.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[StreamDelta]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def close(self) -> list[StreamDelta]:
        """Flush any carried-over input and return its deltas."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._parse_lines([remainder])

    def _parse_lines(self, lines: list[str]) -> list[StreamDelta]:
        deltas = []
        for line in lines:
            delta = self._parse_line(line.strip())
            if delta is not None:
                deltas.append(delta)
        return deltas

    def _parse_line(self, line: str) -> StreamDelta | None:
        if not line or not line.startswith(EVENT_PREFIX):
            return None
        data = line[len(EVENT_PREFIX) :].strip()
        if data == DONE_SENTINEL:
            return None
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed stream event: {e}: {data[:200]}")
            return None
        try:
            return parse_record(payload)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unexpected stream event: {e}: {data[:200]}")
            return None


async def decode_stream(chunks: AsyncIterator[bytes]) -> AsyncIterator[StreamDelta]:
    """Decode a byte stream into deltas.

    Exhaustion of the returned iterator is the completion signal.
    """
    decoder = StreamDecoder()
    async for chunk in chunks:
        for delta in decoder.feed(chunk):
            yield delta
    for delta in decoder.close():
        yield delta
