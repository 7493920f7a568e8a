"""Tests for SSE framing."""

import json

from oddsedge.streaming.sse import PING, SSEDecoder, format_sse, parse_sse


class TestFormatSSE:
    """Tests for format_sse."""

    def test_event_and_data(self):
        assert format_sse("hello", {"v": 3}) == 'event: hello\ndata: {"v":3}\n\n'

    def test_event_id(self):
        frame = format_sse("update", {"v": 1}, event_id="7")
        assert frame.startswith("id: 7\nevent: update\n")

    def test_non_json_values_stringified(self, now):
        frame = format_sse("update", {"at": now})
        assert now.isoformat(sep=" ") in frame


class TestParseSSE:
    """Tests for decoding event streams."""

    def test_round_trip_through_lines(self):
        text = format_sse("hello", {"v": 1}) + PING + format_sse("update", {"ids": ["a"]})
        events = list(parse_sse(text.splitlines()))

        assert [name for name, _ in events] == ["hello", "update"]
        assert json.loads(events[1][1]) == {"ids": ["a"]}

    def test_default_event_name(self):
        assert list(parse_sse(["data: x", ""])) == [("message", "x")]

    def test_multiline_data(self):
        assert list(parse_sse(["event: e", "data: a", "data: b", ""])) == [("e", "a\nb")]

    def test_trailing_event_without_blank_line(self):
        assert list(parse_sse(["event: e", "data: x"])) == [("e", "x")]


class TestSSEDecoder:
    """Tests for the incremental decoder."""

    def test_feed_raw_lines(self):
        """Test lines as they arrive off the socket, with CRLF endings."""
        decoder = SSEDecoder()
        assert decoder.feed("event: update\r\n") is None
        assert decoder.feed('data: {"v":2}\r\n') is None
        assert decoder.feed("\r\n") == ("update", '{"v":2}')

    def test_ping_ignored(self):
        decoder = SSEDecoder()
        assert decoder.feed(": ping\n") is None
        assert decoder.feed("\n") is None
