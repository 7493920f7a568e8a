"""
Async client for the opportunity stream.

Keeps a local copy of the visible rows in sync with ``/api/sse/arbs`` and
reconnects with capped exponential backoff. The connection lifecycle is an
explicit state machine:

    CLOSED -> CONNECTING -> CONNECTED <-> RECONNECTING -> CLOSED

An expired session is never retried automatically; ``reconnect_now()``
checks ``/api/me/plan`` first and only resumes when the caller is signed
in again.
"""
import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from loguru import logger

from oddsedge.config.constants import (
    SSE_EVENT_AUTH_EXPIRED,
    SSE_EVENT_ENTITLEMENT_ERROR,
    SSE_EVENT_HELLO,
    SSE_EVENT_UPDATE,
)

from .sse import SSEDecoder


class StreamState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


TRANSITIONS: dict[StreamState, frozenset[StreamState]] = {
    StreamState.CLOSED: frozenset({StreamState.CONNECTING}),
    StreamState.CONNECTING: frozenset({StreamState.CONNECTED, StreamState.RECONNECTING, StreamState.CLOSED}),
    StreamState.CONNECTED: frozenset({StreamState.RECONNECTING, StreamState.CLOSED}),
    StreamState.RECONNECTING: frozenset(
        {StreamState.CONNECTED, StreamState.RECONNECTING, StreamState.CLOSED}
    ),
}


class InvalidTransition(RuntimeError):
    pass


class StreamError(Exception):
    """The stream could not be opened or broke off."""


class StreamAuthExpired(StreamError):
    pass


@dataclass(frozen=True)
class ReconnectPolicy:
    """Capped exponential backoff: 1s doubling to 15s, 10 attempts."""

    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 15.0
    max_retries: int = 10

    def delay(self, attempt: int) -> float:
        return min(self.initial_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


def row_directions(old: dict, new: dict) -> dict[str, str]:
    """Direction of movement for roi and both side prices between two rows."""

    def price(row: dict, side: str) -> Optional[float]:
        leg = row.get(side)
        return leg.get("price") if leg else None

    pairs = {
        "roi": (old.get("roi_bps"), new.get("roi_bps")),
        "side_a": (price(old, "side_a"), price(new, "side_a")),
        "side_b": (price(old, "side_b"), price(new, "side_b")),
    }
    directions = {}
    for name, (a, b) in pairs.items():
        if a is None or b is None or a == b:
            continue
        directions[name] = "up" if b > a else "down"
    return directions


class ArbsStream:
    """
    Live view of the opportunity stream.

    Example:
        >>> stream = ArbsStream("https://api.example.com", token=token, mode="live")
        >>> await stream.start()
        >>> ...
        >>> for row in stream.ordered_rows:
        ...     print(row["roi_bps"], stream.changes.get(row["id"]))
        >>> await stream.close()
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        mode: str = "all",
        event_id: Optional[str] = None,
        limit: Optional[int] = None,
        policy: Optional[ReconnectPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_update: Optional[Callable[["ArbsStream"], Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.mode = mode
        self.event_id = event_id
        self.limit = limit
        self.policy = policy or ReconnectPolicy()
        self.on_update = on_update
        self._sleep = sleep

        self._session = session
        self._owns_session = session is None
        self._task: Optional[asyncio.Task] = None

        self.state = StreamState.CLOSED
        self.rows: dict[str, dict] = {}
        self.ids: list[str] = []
        self.changes: dict[str, dict[str, str]] = {}
        self.added: set[str] = set()
        self.counts: Optional[dict[str, int]] = None
        self.filtered_count = 0
        self.filtered_reason: Optional[str] = None
        self.plan: Optional[str] = None
        self.cursor = 0
        self.has_more = False
        self.page_size: Optional[int] = None
        self.version = 0
        self.auth_expired = False
        self.has_failed = False
        self.retries = 0
        self.last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        return self.state == StreamState.CONNECTED

    @property
    def ordered_rows(self) -> list[dict]:
        return [self.rows[i] for i in self.ids if i in self.rows]

    def _transition(self, new: StreamState) -> None:
        if new not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new.value}")
        logger.debug(f"Stream {self.state.value} -> {new.value}")
        self.state = new

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _params(self) -> dict[str, str]:
        params = {"mode": self.mode}
        if self.event_id:
            params["event_id"] = self.event_id
        if self.limit:
            params["limit"] = str(self.limit)
        return params

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, sock_read=60))
            self._owns_session = True
        return self._session

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------
    def apply_update(self, data: dict[str, Any]) -> None:
        """Merge one update event into the local rows."""
        for row in data.get("rows") or []:
            if not isinstance(row, dict) or "id" not in row:
                logger.warning("Ignoring update row without an id")
                continue
            self.rows[row["id"]] = row
        self.ids = list(data.get("ids", []))
        visible = set(self.ids)
        self.rows = {k: v for k, v in self.rows.items() if k in visible}

        self.changes = dict(data.get("changes") or {})
        self.added = set(data.get("added") or [])
        self.counts = data.get("counts", self.counts)
        self.filtered_count = data.get("filteredCount") or 0
        self.filtered_reason = data.get("filteredReason")
        self.plan = data.get("plan", self.plan)
        self.version = max(self.version, data.get("v") or 0)

    def handle_event(self, event: str, payload: str) -> None:
        try:
            data = json.loads(payload) if payload else {}
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed {event} event")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {event} event with a non-object payload")
            return

        if event == SSE_EVENT_HELLO:
            if self.state != StreamState.CONNECTED:
                self._transition(StreamState.CONNECTED)
            self.retries = 0
            self.has_failed = False
            self.plan = data.get("plan", self.plan)
        elif event == SSE_EVENT_UPDATE:
            self.apply_update(data)
            if self.on_update is not None:
                self.on_update(self)
        elif event == SSE_EVENT_AUTH_EXPIRED:
            self.auth_expired = True
        elif event == SSE_EVENT_ENTITLEMENT_ERROR:
            self.last_error = data.get("error", "entitlement_unavailable")
            self.plan = data.get("plan", "free")

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------
    async def _connect_once(self) -> None:
        session = await self._get_session()
        async with session.get(
            f"{self.base_url}/api/sse/arbs", params=self._params(), headers=self._headers()
        ) as response:
            if response.status == 401:
                raise StreamAuthExpired("HTTP 401")
            if response.status != 200:
                raise StreamError(f"HTTP {response.status}")

            decoder = SSEDecoder()
            async for raw in response.content:
                event = decoder.feed(raw.decode("utf-8", errors="replace"))
                if event is None:
                    continue
                self.handle_event(*event)
                if self.auth_expired:
                    raise StreamAuthExpired("auth_expired event")
        raise StreamError("stream ended")

    async def _run(self) -> None:
        while True:
            try:
                await self._connect_once()
            except StreamAuthExpired:
                self.auth_expired = True
                self.last_error = "auth_expired"
                if self.state != StreamState.CLOSED:
                    self._transition(StreamState.CLOSED)
                logger.info("Stream closed: session expired")
                return
            except (StreamError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.last_error = str(e) or type(e).__name__
            except Exception as e:
                logger.exception("Unexpected error in stream connection")
                self.last_error = f"{type(e).__name__}: {e}"

            if self.state == StreamState.CLOSED:
                return

            self.retries += 1
            if self.retries >= self.policy.max_retries:
                self.has_failed = True
                self._transition(StreamState.CLOSED)
                logger.warning(f"Stream failed after {self.retries} attempts: {self.last_error}")
                return

            self._transition(StreamState.RECONNECTING)
            delay = self.policy.delay(self.retries)
            logger.debug(f"Reconnecting in {delay:.1f}s (attempt {self.retries})")
            await self._sleep(delay)

    async def start(self) -> None:
        """Open the stream in the background."""
        if self._task is not None and not self._task.done():
            return
        self._transition(StreamState.CONNECTING)
        self._task = asyncio.create_task(self._run())

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def close(self) -> None:
        if self.state != StreamState.CLOSED:
            self._transition(StreamState.CLOSED)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # REST helpers
    # ------------------------------------------------------------------
    async def refresh(self, force: bool = False) -> bool:
        """
        Reload the page at ``cursor`` over REST.

        Live updates always describe the top of the list; paging only
        applies to what this call loads.

        Returns:
            False when the server reports no change since our version (304)
        """
        session = await self._get_session()
        params = self._params()
        params["v"] = "0" if force else str(self.version)
        params["cursor"] = str(self.cursor)
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        async with session.get(f"{self.base_url}/api/arbs", params=params, headers=headers) as response:
            if response.status == 304:
                return False
            if response.status == 401:
                self.auth_expired = True
                return False
            if response.status != 200:
                raise StreamError(f"HTTP {response.status}")
            data = await response.json()

        previous = self.rows
        self.rows = {row["id"]: row for row in data.get("rows", [])}
        self.ids = list(data.get("ids", []))
        self.changes = {}
        for opp_id, row in self.rows.items():
            old = previous.get(opp_id)
            if old is not None:
                directions = row_directions(old, row)
                if directions:
                    self.changes[opp_id] = directions
        self.added = set(self.rows) - set(previous)
        self.counts = data.get("counts", self.counts)
        self.filtered_count = data.get("filteredCount") or 0
        self.filtered_reason = data.get("filteredReason")
        self.plan = data.get("plan", self.plan)
        self.version = data.get("v", self.version)
        self.cursor = data.get("cursor", self.cursor)
        self.has_more = bool(data.get("hasMore"))
        self.page_size = (data.get("limits") or {}).get("limit", self.page_size)
        return True

    async def next_page(self) -> bool:
        """Load the page after the current one. False when there is none."""
        if not self.has_more or not self.page_size:
            return False
        self.cursor += self.page_size
        return await self.refresh(force=True)

    async def prev_page(self) -> bool:
        """Load the page before the current one. False when already at the top."""
        if self.cursor == 0:
            return False
        self.cursor = max(0, self.cursor - (self.page_size or self.cursor))
        return await self.refresh(force=True)

    async def check_plan(self) -> dict[str, Any]:
        session = await self._get_session()
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        async with session.get(f"{self.base_url}/api/me/plan", headers=headers) as response:
            if response.status == 401:
                return {"authenticated": False, "error": "auth_expired"}
            return await response.json()

    async def reconnect_now(self, token: Optional[str] = None) -> bool:
        """
        Manually resume after an expired session or exhausted retries.

        Returns:
            True if the stream was restarted
        """
        if token is not None:
            self.token = token
        if self.token:
            plan = await self.check_plan()
            if not plan.get("authenticated"):
                self.auth_expired = True
                return False

        self.auth_expired = False
        self.has_failed = False
        self.retries = 0
        self.last_error = None
        if self.state != StreamState.CLOSED:
            await self.close()
        await self.start()
        return True
