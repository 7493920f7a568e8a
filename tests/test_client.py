"""Tests for the reconnecting stream client."""

import aiohttp
import pytest

from oddsedge.streaming.client import (
    ArbsStream,
    InvalidTransition,
    ReconnectPolicy,
    StreamAuthExpired,
    StreamError,
    StreamState,
    row_directions,
)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def stream(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return ArbsStream("http://localhost:8000/", token="t1", sleep=fake_sleep)


def row(opp_id, roi, price_a=110, price_b=105):
    return {
        "id": opp_id,
        "roi_bps": roi,
        "side_a": {"book": "bookx", "price": price_a},
        "side_b": {"book": "booky", "price": price_b},
    }


class TestReconnectPolicy:
    """Tests for backoff delays."""

    def test_delays(self):
        policy = ReconnectPolicy()
        assert [policy.delay(n) for n in range(1, 7)] == [1, 2, 4, 8, 15, 15]


class TestEventHandling:
    """Tests for merging stream events into local state."""

    def test_apply_update(self, stream):
        stream.apply_update({"v": 1, "ids": ["a", "b"], "rows": [row("a", 150), row("b", 80)], "added": ["a", "b"]})
        stream.apply_update(
            {"v": 2, "ids": ["b", "c"], "rows": [row("c", 60)], "changes": {}, "counts": {"all": 2}}
        )

        assert stream.ids == ["b", "c"]
        assert set(stream.rows) == {"b", "c"}
        assert stream.rows["b"]["roi_bps"] == 80
        assert stream.version == 2
        assert stream.counts == {"all": 2}

    def test_version_never_goes_back(self, stream):
        stream.apply_update({"v": 5, "ids": []})
        stream.apply_update({"v": 3, "ids": []})
        assert stream.version == 5

    def test_hello_connects(self, stream):
        stream.state = StreamState.CONNECTING
        stream.retries = 3
        stream.handle_event("hello", '{"plan": "sharp"}')

        assert stream.connected
        assert stream.retries == 0
        assert stream.plan == "sharp"

    def test_update_callback(self, stream):
        seen = []
        stream.on_update = seen.append
        stream.handle_event("update", '{"v": 1, "ids": ["a"], "rows": []}')
        assert seen == [stream]

    def test_entitlement_error(self, stream):
        stream.handle_event("entitlement_error", '{"error": "entitlement_unavailable", "plan": "free"}')
        assert stream.last_error == "entitlement_unavailable"
        assert stream.plan == "free"

    def test_malformed_payload_ignored(self, stream):
        stream.handle_event("update", "{not json")
        assert stream.version == 0

    def test_non_object_payload_ignored(self, stream):
        stream.handle_event("update", "[1, 2]")
        assert stream.version == 0

    def test_row_without_id_skipped(self, stream):
        stream.apply_update({"v": 1, "ids": ["a"], "rows": [{"roi_bps": 50}, row("a", 150)]})
        assert set(stream.rows) == {"a"}

    def test_invalid_transition(self, stream):
        with pytest.raises(InvalidTransition):
            stream._transition(StreamState.CONNECTED)

    def test_row_directions(self):
        assert row_directions(row("a", 100, 110, 105), row("a", 120, 105, 105)) == {
            "roi": "up",
            "side_a": "down",
        }


class TestReconnectLoop:
    """Tests for the connection state machine."""

    async def test_retries_exhausted(self, stream, sleeps):
        """Test the backoff schedule and the failed state after ten attempts."""
        attempts = []

        async def always_fail():
            attempts.append(stream.state)
            raise StreamError("connection refused")

        stream._connect_once = always_fail
        await stream.start()
        await stream.wait_closed()

        assert sleeps == [1, 2, 4, 8, 15, 15, 15, 15, 15]
        assert len(attempts) == 10
        assert stream.has_failed
        assert stream.state == StreamState.CLOSED
        assert stream.last_error == "connection refused"

    async def test_auth_expired_not_retried(self, stream, sleeps):
        async def expired():
            raise StreamAuthExpired("HTTP 401")

        stream._connect_once = expired
        await stream.start()
        await stream.wait_closed()

        assert sleeps == []
        assert stream.auth_expired
        assert not stream.has_failed
        assert stream.state == StreamState.CLOSED

    async def test_hello_resets_backoff(self, stream, sleeps):
        """Test that every successful hello restarts the backoff at one second."""
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 3:
                raise StreamAuthExpired("auth_expired event")
            stream.handle_event("hello", "{}")
            raise StreamError("stream ended")

        stream._connect_once = flaky
        await stream.start()
        await stream.wait_closed()

        assert sleeps == [1.0, 1.0]

    async def test_reconnect_now_requires_session(self, stream):
        async def signed_out():
            return {"plan": "free", "authenticated": False, "error": "auth_expired"}

        stream.auth_expired = True
        stream.check_plan = signed_out

        assert await stream.reconnect_now() is False
        assert stream.auth_expired
        assert stream.state == StreamState.CLOSED

    async def test_reconnect_now_restarts(self, stream):
        async def signed_in():
            return {"plan": "elite", "authenticated": True}

        async def hello_then_expire():
            stream.handle_event("hello", '{"plan": "elite"}')
            raise StreamAuthExpired("auth_expired event")

        stream.has_failed = True
        stream.retries = 10
        stream.check_plan = signed_in
        stream._connect_once = hello_then_expire

        assert await stream.reconnect_now(token="t2") is True
        await stream.wait_closed()

        assert stream.token == "t2"
        assert stream.plan == "elite"
        assert not stream.has_failed
        assert stream.retries == 0

    async def test_unexpected_error_counts_as_failed_attempt(self, stream, sleeps):
        async def broken():
            raise KeyError("id")

        stream._connect_once = broken
        await stream.start()
        await stream.wait_closed()

        assert len(sleeps) == 9
        assert stream.has_failed
        assert stream.state == StreamState.CLOSED
        assert stream.last_error.startswith("KeyError")


class FakeResponse:
    def __init__(self, lines, status=200):
        self.status = status
        self.content = self._iterate(lines)

    @staticmethod
    async def _iterate(lines):
        for line in lines:
            yield line

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Serves one scripted stream, then refuses connections."""

    closed = False

    def __init__(self, lines):
        self.lines = lines
        self.calls = 0

    def get(self, url, **kwargs):
        self.calls += 1
        if self.calls > 1:
            raise aiohttp.ClientConnectionError("connection refused")
        return FakeResponse(self.lines)


class TestConnection:
    """Tests for reading a served stream."""

    async def test_invalid_utf8_does_not_kill_stream(self, sleeps):
        lines = [
            b"event: hello\n",
            b'data: {"plan": "elite"}\n',
            b"\n",
            b"event: update\n",
            b'data: {"v": 1, "ids": [], "note": "\xff"}\n',
            b"\n",
        ]

        async def fake_sleep(delay):
            sleeps.append(delay)

        session = FakeSession(lines)
        stream = ArbsStream("http://localhost:8000", session=session, sleep=fake_sleep)
        await stream.start()
        await stream.wait_closed()

        assert stream.version == 1
        assert stream.plan == "elite"
        assert session.calls == 10
        assert stream.has_failed
        assert stream.state == StreamState.CLOSED


class FakeJSONResponse:
    def __init__(self, data, status=200):
        self.status = status
        self.data = data

    async def json(self):
        return self.data

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class PagedSession:
    """Serves a five-row ranked list two rows at a time."""

    closed = False

    def __init__(self):
        self.rows = [row(f"r{i}", 500 - i * 10) for i in range(5)]
        self.requests = []

    def get(self, url, params=None, **kwargs):
        self.requests.append(dict(params))
        cursor = int(params["cursor"])
        page = self.rows[cursor : cursor + 2]
        return FakeJSONResponse(
            {
                "v": 3,
                "ids": [r["id"] for r in page],
                "rows": page,
                "limits": {"limit": 2},
                "cursor": cursor,
                "hasMore": cursor + 2 < len(self.rows),
            }
        )


class TestPaging:
    """Tests for REST paging helpers."""

    async def test_next_and_prev_page(self):
        session = PagedSession()
        stream = ArbsStream("http://localhost:8000", session=session, limit=2)

        assert await stream.refresh()
        assert stream.ids == ["r0", "r1"]
        assert stream.has_more

        assert await stream.next_page()
        assert await stream.next_page()
        assert stream.ids == ["r4"]
        assert stream.cursor == 4
        assert not stream.has_more
        assert await stream.next_page() is False

        assert await stream.prev_page()
        assert stream.ids == ["r2", "r3"]
        assert session.requests[-1]["v"] == "0"

    async def test_prev_page_at_top(self, stream):
        assert await stream.prev_page() is False
