"""
Server-sent events framing.
"""
import json
from typing import Any, Iterable, Iterator, Optional

PING = ": ping\n\n"


def format_sse(event: str, data: Any, event_id: Optional[str] = None) -> str:
    """
    Encode one event in ``text/event-stream`` format.

    Examples:
        >>> format_sse("hello", {"v": 3})
        'event: hello\\ndata: {"v":3}\\n\\n'
    """
    payload = json.dumps(data, separators=(",", ":"), default=str)
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    for line in payload.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


class SSEDecoder:
    """
    Incremental ``text/event-stream`` decoder.

    Feed it one line at a time; it returns (event, data) when a blank line
    completes an event. Comment lines (keepalive pings) are skipped and
    events without an ``event:`` field are reported as "message".
    """

    def __init__(self):
        self._event: Optional[str] = None
        self._data: list[str] = []

    def feed(self, raw: str) -> Optional[tuple[str, str]]:
        line = raw.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def flush(self) -> Optional[tuple[str, str]]:
        result = None
        if self._data:
            result = (self._event or "message", "\n".join(self._data))
        self._event, self._data = None, []
        return result


def parse_sse(lines: Iterable[str]) -> Iterator[tuple[str, str]]:
    """Decode complete ``text/event-stream`` lines into (event, data) pairs."""
    decoder = SSEDecoder()
    for line in lines:
        event = decoder.feed(line)
        if event is not None:
            yield event
    event = decoder.flush()
    if event is not None:
        yield event
