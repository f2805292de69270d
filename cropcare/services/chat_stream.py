"""Incremental parser for the chat function's event stream."""

import codecs
import json
import logging
from typing import Any

from cropcare.models.chat import StreamEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"


def extract_delta(payload: Any) -> str:
    """``choices[0].delta.content`` or an empty string."""
    try:
        content = payload["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    return content if isinstance(content, str) else ""


class EventStreamParser:
    """Turns arbitrarily split reads into content deltas.

    Only complete lines are parsed; a partial line (including a partial UTF-8
    sequence) stays buffered until the rest arrives, so the events produced do
    not depend on where the reads were split.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk

        events: list[StreamEvent] = []
        while not self.done and "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def close(self) -> list[StreamEvent]:
        """Flush whatever is left once the stream has ended."""
        if self.done:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        event = self._parse_line(tail)
        return [event] if event is not None else []

    def _parse_line(self, line: str) -> StreamEvent | None:
        line = line.removesuffix("\r")
        if not line.strip() or line.startswith(":"):
            return None
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX) :].strip()
        if data == DONE_MARKER:
            self.done = True
            return StreamEvent(done=True)

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed stream line: {e}")
            return None

        delta = extract_delta(payload)
        return StreamEvent(delta=delta) if delta else None
