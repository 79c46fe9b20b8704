"""
Incremental parser for the generation event stream.
"""

from pydantic import ValidationError
from typing import List, Optional, Union
import json
import logging

from ..schemas.events import StreamEvent, UnknownEventError, parse_event


logger = logging.getLogger(__name__)


class EventStreamParser:
    """
    Turns arbitrary chunks of a ``text/event-stream`` body into typed events.

    Chunks may split frames (or multi-byte characters) anywhere; incomplete
    input stays buffered until the blank line that ends its frame arrives.
    """

    def __init__(self):
        self._buffer = ""
        self._pending = b""

    def feed(self, chunk: Union[str, bytes]) -> List[StreamEvent]:
        if isinstance(chunk, bytes):
            data = self._pending + chunk
            try:
                text = data.decode("utf-8")
                self._pending = b""
            except UnicodeDecodeError as e:
                # Keep a trailing partial character for the next chunk
                text = data[:e.start].decode("utf-8")
                self._pending = data[e.start:]
        else:
            text = chunk

        self._buffer += text.replace("\r\n", "\n")
        events: List[StreamEvent] = []
        while "\n\n" in self._buffer:
            frame, self._buffer = self._buffer.split("\n\n", 1)
            event = self._parse_frame(frame)
            if event is not None:
                events.append(event)
        return events

    def _parse_frame(self, frame: str) -> Optional[StreamEvent]:
        name = "message"
        data_lines: List[str] = []
        for line in frame.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "event":
                name = value
            elif field == "data":
                data_lines.append(value)

        if not data_lines:
            return None

        try:
            payload = json.loads("\n".join(data_lines))
        except json.JSONDecodeError:
            logger.warning("Skipping %s frame with invalid JSON", name)
            return None

        try:
            return parse_event(name, payload)
        except UnknownEventError:
            logger.debug("Skipping unknown event %s", name)
            return None
        except ValidationError as e:
            logger.warning("Skipping malformed %s frame: %s", name, e)
            return None
