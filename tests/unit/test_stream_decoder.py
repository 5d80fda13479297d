"""Unit tests for the completion stream decoder."""

import json

import pytest

from toolchat_server.llm.stream import (
    StreamDecoder,
    StreamDelta,
    ToolCallAccumulator,
    ToolCallFragment,
    decode_stream,
    parse_record,
)


def _decode_all(chunks: list[bytes]) -> list[StreamDelta]:
    decoder = StreamDecoder()
    deltas = []
    for chunk in chunks:
        deltas.extend(decoder.feed(chunk))
    deltas.extend(decoder.close())
    return deltas


class TestStreamDecoder:
    """Tests for StreamDecoder line handling."""

    def test_content_deltas_in_order(self, records):
        body = records.text_body("Hel", "lo", "!")

        deltas = _decode_all([body])

        assert [d.content for d in deltas if d.content] == ["Hel", "lo", "!"]
        assert deltas[-1].finish_reason == "stop"

    def test_done_sentinel_yields_nothing(self):
        assert _decode_all([b"data: [DONE]\n\n"]) == []

    def test_non_data_lines_are_ignored(self, records):
        body = b": keep-alive\n\nevent: message\n" + records.text_body("Hi")

        deltas = _decode_all([body])

        assert [d.content for d in deltas if d.content] == ["Hi"]

    def test_malformed_json_is_skipped(self, records):
        body = b"data: {not json\n\n" + records.text_body("ok")

        deltas = _decode_all([body])

        assert [d.content for d in deltas if d.content] == ["ok"]

    def test_unexpected_record_shape_is_skipped(self, records):
        body = b'data: {"choices": "nope"}\n\n' + records.text_body("ok")

        deltas = _decode_all([body])

        assert [d.content for d in deltas if d.content] == ["ok"]

    def test_crlf_line_endings(self, records):
        body = records.text_body("a", "b").replace(b"\n", b"\r\n")

        deltas = _decode_all([body])

        assert [d.content for d in deltas if d.content] == ["a", "b"]

    def test_data_prefix_without_space(self):
        deltas = _decode_all([b'data:{"choices":[{"delta":{"content":"x"}}]}\n'])

        assert deltas == [StreamDelta(content="x")]

    def test_trailing_line_without_newline_processed_on_close(self, records):
        record = json.dumps(records.content("tail")).encode()
        decoder = StreamDecoder()

        assert decoder.feed(b"data: " + record) == []
        assert decoder.close() == [StreamDelta(content="tail")]

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 16, 64])
    def test_chunking_does_not_change_deltas(self, records, chunk_size):
        body = records.body(
            records.content("Grüße, "),
            records.content("世界 🌍"),
            records.tool_call(0, id="call_1", name="mcp_weather_get_weather"),
            records.tool_call(0, arguments='{"city": "Paris"}'),
            records.finish("tool_calls"),
        )
        chunks = [body[i : i + chunk_size] for i in range(0, len(body), chunk_size)]

        assert _decode_all(chunks) == _decode_all([body])

    def test_split_multibyte_character(self, records):
        body = records.text_body("é")
        split_at = body.index("é".encode()) + 1

        deltas = _decode_all([body[:split_at], body[split_at:]])

        assert deltas[0].content == "é"


class TestParseRecord:
    """Tests for parse_record."""

    def test_empty_choices(self):
        assert parse_record({"choices": []}) == StreamDelta()

    def test_tool_call_fragments(self, records):
        delta = parse_record(
            records.tool_call(1, arguments='{"a"', id="call_9", name="fn")
        )

        assert delta.tool_calls == (
            ToolCallFragment(index=1, id="call_9", name="fn", arguments='{"a"'),
        )

    def test_empty_content_is_none(self):
        delta = parse_record({"choices": [{"delta": {"content": ""}}]})

        assert delta.content is None


class TestToolCallAccumulator:
    """Tests for ToolCallAccumulator."""

    def test_arguments_concatenate_by_index(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(ToolCallFragment(index=0, id="call_1", name="get_weather"))
        accumulator.add(ToolCallFragment(index=1, id="call_2", name="get_time"))
        accumulator.add(ToolCallFragment(index=0, arguments='{"city":'))
        accumulator.add(ToolCallFragment(index=1, arguments="{}"))
        accumulator.add(ToolCallFragment(index=0, arguments=' "Paris"}'))

        calls = accumulator.calls()

        assert len(accumulator) == 2
        assert [call.name for call in calls] == ["get_weather", "get_time"]
        assert calls[0].arguments == '{"city": "Paris"}'
        assert calls[0].id == "call_1"

    def test_first_fragment_establishes_name(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(ToolCallFragment(index=0, id="call_1", name="first"))
        accumulator.add(ToolCallFragment(index=0, id="call_x", name="second"))

        call = accumulator.calls()[0]
        assert call.name == "first"
        assert call.id == "call_1"

    def test_calls_ordered_by_index(self):
        accumulator = ToolCallAccumulator()
        accumulator.add(ToolCallFragment(index=2, name="c"))
        accumulator.add(ToolCallFragment(index=0, name="a"))

        assert [call.index for call in accumulator.calls()] == [0, 2]


@pytest.mark.asyncio
async def test_decode_stream_async(records):
    body = records.text_body("one", "two")

    async def chunks():
        for i in range(0, len(body), 5):
            yield body[i : i + 5]

    deltas = [delta async for delta in decode_stream(chunks())]

    assert [d.content for d in deltas if d.content] == ["one", "two"]
