"""Removal of textual tool-call markup from the live chunk stream.

In prompt mode the model writes tool calls as tagged blocks inside its
ordinary output. DisplayFilter holds back just enough text to make sure
neither a complete block nor a fragment of its opening tag ever reaches the
caller, while releasing ordinary text with minimal delay.
"""

OPEN_TAG = "<tool_call>"
CLOSE_TAG = "</tool_call>"


class DisplayFilter:
    """Streaming filter that strips <tool_call> blocks from text.

    Attributes:
        safety_margin: Characters always withheld while no opening tag is
            pending; long enough to hold a complete opening tag
        release_threshold: Buffer length above which text is released
    """

    def __init__(self, release_threshold: int = 20) -> None:
        self.safety_margin = len(OPEN_TAG)
        self.release_threshold = max(release_threshold, self.safety_margin)
        self._pending = ""

    def feed(self, fragment: str) -> str:
        """Add a fragment and return the text that is safe to display."""
        self._pending += fragment
        released: list[str] = []

        while True:
            start = self._pending.find(OPEN_TAG)
            if start == -1:
                if len(self._pending) > self.release_threshold:
                    cut = len(self._pending) - self.safety_margin
                    released.append(self._pending[:cut])
                    self._pending = self._pending[cut:]
                break

            end = self._pending.find(CLOSE_TAG, start + len(OPEN_TAG))
            released.append(self._pending[:start])
            if end == -1:
                # Withhold everything from the opening tag on
                self._pending = self._pending[start:]
                break
            self._pending = self._pending[end + len(CLOSE_TAG) :]

        return "".join(released)

    def flush(self) -> str:
        """Release the remainder at stream end, minus any unfinished block."""
        remainder, self._pending = self._pending, ""
        released: list[str] = []

        while True:
            start = remainder.find(OPEN_TAG)
            if start == -1:
                released.append(_strip_partial_open_tag(remainder))
                break
            released.append(remainder[:start])
            end = remainder.find(CLOSE_TAG, start + len(OPEN_TAG))
            if end == -1:
                break
            remainder = remainder[end + len(CLOSE_TAG) :]

        return "".join(released)


def _strip_partial_open_tag(text: str) -> str:
    """Drop a trailing prefix of the opening tag, e.g. '<tool_ca'."""
    for length in range(min(len(OPEN_TAG) - 1, len(text)), 0, -1):
        if text.endswith(OPEN_TAG[:length]):
            return text[:-length]
    return text


def strip_tool_calls(text: str) -> str:
    """Remove every tool-call block from a complete text."""
    display = DisplayFilter()
    return display.feed(text) + display.flush()
