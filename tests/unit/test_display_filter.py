"""Unit tests for DisplayFilter, which hides tool-call markup from callers."""

import pytest

from toolchat_server.chat.display import (
    CLOSE_TAG,
    OPEN_TAG,
    DisplayFilter,
    strip_tool_calls,
)

BLOCK = (
    "<tool_call><server_id>weather</server_id><tool_name>get_weather</tool_name>"
    '<arguments>{"city": "Paris"}</arguments></tool_call>'
)


def _run(fragments: list[str], release_threshold: int = 20) -> tuple[list[str], str]:
    display = DisplayFilter(release_threshold=release_threshold)
    released = [display.feed(fragment) for fragment in fragments]
    released.append(display.flush())
    return released, "".join(released)


def _split(text: str, size: int) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


class TestDisplayFilter:
    """Tests for streaming markup removal."""

    def test_plain_text_passes_through(self):
        _, shown = _run(["Hello, ", "this is ", "ordinary text."])

        assert shown == "Hello, this is ordinary text."

    def test_complete_block_removed(self):
        _, shown = _run(["Let me check. ", BLOCK, " Done."])

        assert shown == "Let me check.  Done."

    def test_multiple_blocks_removed(self):
        _, shown = _run([f"a{BLOCK}b{BLOCK}c"])

        assert shown == "abc"

    def test_incomplete_block_dropped_at_flush(self):
        _, shown = _run(["Before ", "<tool_call><server_id>weather"])

        assert shown == "Before "

    def test_dangling_partial_open_tag_dropped_at_flush(self):
        _, shown = _run(["The answer is 42. <tool_ca"])

        assert shown == "The answer is 42. "

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 11, 40])
    def test_no_markup_fragment_ever_released(self, size):
        text = f"Checking the weather now. {BLOCK} It is sunny in Paris today."

        released, shown = _run(_split(text, size))

        assert shown == "Checking the weather now.  It is sunny in Paris today."
        for piece in released:
            assert "<" not in piece
            assert ">" not in piece

    def test_text_released_before_stream_end(self):
        display = DisplayFilter(release_threshold=20)

        released = display.feed("This sentence is definitely longer than twenty characters.")

        assert released
        assert len(released) == len(
            "This sentence is definitely longer than twenty characters."
        ) - display.safety_margin

    def test_short_text_held_until_flush(self):
        display = DisplayFilter(release_threshold=20)

        assert display.feed("Hi there") == ""
        assert display.flush() == "Hi there"

    def test_output_withheld_while_block_open(self):
        display = DisplayFilter()

        assert display.feed(f"Ok {OPEN_TAG}<server_id>") == "Ok "
        assert display.feed("x" * 100) == ""
        assert display.feed(f"{CLOSE_TAG} after") == ""
        assert display.flush() == " after"

    def test_safety_margin_holds_open_tag(self):
        assert DisplayFilter().safety_margin == len(OPEN_TAG)


def test_strip_tool_calls():
    assert strip_tool_calls(f"Before {BLOCK} after") == "Before  after"
