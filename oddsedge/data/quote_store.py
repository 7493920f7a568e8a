"""
Quote normalization and the live quote store.

Raw sportsbook odds updates are validated, converted to implied
probability and kept as the newest quote per (sportsbook, selection).
Detection never reads the store directly: each tick takes an immutable
snapshot grouped by market.
"""
import math
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from loguru import logger

from oddsedge.betting.odds_converter import (
    american_to_implied_probability,
    decimal_to_american,
    is_valid_american,
)
from oddsedge.config.constants import Side

# (event_id, market, selection, line)
MarketKey = tuple[str, str, str, Optional[float]]
# (event_id, market, selection, line, side)
SelectionKey = tuple[str, str, str, Optional[float], Side]


class RejectReason(str, Enum):
    """Why a raw quote was dropped at ingestion."""

    MISSING_FIELD = "missing_field"
    NON_FINITE_PRICE = "non_finite_price"
    INVALID_PRICE = "invalid_price"
    NON_FINITE_LINE = "non_finite_line"
    UNKNOWN_SIDE = "unknown_side"
    BAD_TIMESTAMP = "bad_timestamp"
    STALE = "stale"


class QuoteRejected(Exception):
    """Raised by the normalizer for a quote that cannot be ingested."""

    def __init__(self, reason: RejectReason, detail: str = ""):
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason
        self.detail = detail


def to_utc(value: Union[datetime, int, float, str, None]) -> datetime:
    """
    Coerce a timestamp to an aware UTC datetime.

    Accepts datetimes (naive = UTC), ISO strings, and epoch seconds or
    milliseconds.
    """
    if value is None:
        raise QuoteRejected(RejectReason.BAD_TIMESTAMP, "missing timestamp")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise QuoteRejected(RejectReason.BAD_TIMESTAMP, value) from e
    else:
        if not math.isfinite(value):
            raise QuoteRejected(RejectReason.BAD_TIMESTAMP, str(value))
        seconds = value / 1000.0 if value > 1e12 else float(value)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class RawQuote:
    """An odds update as received from a feed, before validation."""

    sportsbook: str
    event_id: str
    market: str
    side: str
    timestamp: Union[datetime, int, float, str, None]
    american_price: Optional[float] = None
    decimal_price: Optional[float] = None
    line: Optional[float] = None
    selection: str = ""
    deep_link: Optional[str] = None
    sport: str = ""
    league: str = ""
    event_start: Union[datetime, str, None] = None
    is_live: bool = False
    description: str = ""


@dataclass(frozen=True)
class Quote:
    """A validated sportsbook price. Immutable once ingested."""

    sportsbook: str
    event_id: str
    market: str
    selection: str
    line: Optional[float]
    side: Side
    american_price: int
    implied_probability: float
    observed_at: datetime
    deep_link: Optional[str] = None
    sport: str = ""
    league: str = ""
    event_start: Optional[datetime] = None
    is_live: bool = False
    description: str = ""

    @property
    def market_key(self) -> MarketKey:
        return (self.event_id, self.market, self.selection, self.line)

    @property
    def selection_key(self) -> SelectionKey:
        return (self.event_id, self.market, self.selection, self.line, self.side)


def normalize_quote(raw: RawQuote) -> Quote:
    """
    Validate a raw update and convert it into a Quote.

    Raises:
        QuoteRejected: when the price, line, side or timestamp is unusable
    """
    if not raw.sportsbook or not raw.event_id or not raw.market:
        raise QuoteRejected(RejectReason.MISSING_FIELD, "sportsbook, event_id and market are required")

    try:
        side = Side(str(raw.side).strip().lower())
    except ValueError as e:
        raise QuoteRejected(RejectReason.UNKNOWN_SIDE, str(raw.side)) from e

    price = raw.american_price
    if price is None and raw.decimal_price is not None:
        if not math.isfinite(raw.decimal_price):
            raise QuoteRejected(RejectReason.NON_FINITE_PRICE, str(raw.decimal_price))
        if raw.decimal_price <= 1.0:
            raise QuoteRejected(RejectReason.INVALID_PRICE, str(raw.decimal_price))
        price = decimal_to_american(raw.decimal_price)
    if price is None:
        raise QuoteRejected(RejectReason.MISSING_FIELD, "no price")
    if not math.isfinite(price):
        raise QuoteRejected(RejectReason.NON_FINITE_PRICE, str(price))
    if not is_valid_american(price):
        raise QuoteRejected(RejectReason.INVALID_PRICE, str(price))

    line = raw.line
    if line is not None:
        if not math.isfinite(line):
            raise QuoteRejected(RejectReason.NON_FINITE_LINE, str(line))
        line = float(line)

    event_start = to_utc(raw.event_start) if raw.event_start is not None else None

    american = int(round(price))
    return Quote(
        sportsbook=raw.sportsbook.strip().lower(),
        event_id=str(raw.event_id),
        market=raw.market,
        selection=raw.selection or "",
        line=line,
        side=side,
        american_price=american,
        implied_probability=american_to_implied_probability(american),
        observed_at=to_utc(raw.timestamp),
        deep_link=raw.deep_link,
        sport=raw.sport,
        league=raw.league,
        event_start=event_start,
        is_live=bool(raw.is_live),
        description=raw.description,
    )


@dataclass(frozen=True)
class MarketGroup:
    """
    All current quotes for one logical bet across sportsbooks.

    Holds at most one quote per (sportsbook, side).
    """

    key: MarketKey
    sides: Mapping[Side, tuple[Quote, ...]]

    @property
    def event_id(self) -> str:
        return self.key[0]

    @property
    def market(self) -> str:
        return self.key[1]

    @property
    def selection(self) -> str:
        return self.key[2]

    @property
    def line(self) -> Optional[float]:
        return self.key[3]

    def quotes(self, side: Side) -> tuple[Quote, ...]:
        return self.sides.get(side, ())

    def all_quotes(self) -> Iterable[Quote]:
        for quotes in self.sides.values():
            yield from quotes

    @property
    def books(self) -> frozenset[str]:
        return frozenset(q.sportsbook for q in self.all_quotes())

    @property
    def is_live(self) -> bool:
        return any(q.is_live for q in self.all_quotes())

    @property
    def event_start(self) -> Optional[datetime]:
        starts = [q.event_start for q in self.all_quotes() if q.event_start is not None]
        return min(starts) if starts else None

    def _first(self, attr: str) -> Any:
        for q in self.all_quotes():
            value = getattr(q, attr)
            if value:
                return value
        return ""

    @property
    def sport(self) -> str:
        return self._first("sport")

    @property
    def league(self) -> str:
        return self._first("league")

    @property
    def description(self) -> str:
        return self._first("description")


@dataclass(frozen=True)
class QuoteSnapshot:
    """Consistent copy of the quote store taken at tick start."""

    taken_at: datetime
    groups: tuple[MarketGroup, ...] = field(default_factory=tuple)

    @property
    def quote_count(self) -> int:
        return sum(len(qs) for g in self.groups for qs in g.sides.values())


def build_groups(quotes: Iterable[Quote]) -> tuple[MarketGroup, ...]:
    """Group quotes by market, ordered deterministically."""
    by_market: dict[MarketKey, dict[Side, list[Quote]]] = defaultdict(lambda: defaultdict(list))
    for quote in quotes:
        by_market[quote.market_key][quote.side].append(quote)

    groups = []
    for key in sorted(by_market, key=_market_sort_key):
        sides = {
            side: tuple(sorted(qs, key=lambda q: q.sportsbook))
            for side, qs in sorted(by_market[key].items(), key=lambda kv: kv[0].value)
        }
        groups.append(MarketGroup(key=key, sides=MappingProxyType(sides)))
    return tuple(groups)


def _market_sort_key(key: MarketKey) -> tuple:
    event_id, market, selection, line = key
    return (event_id, market, selection, line is not None, line if line is not None else 0.0)


class QuoteStore:
    """
    Newest quote per (sportsbook, selection).

    Writes are last-write-wins by observed timestamp: an update older than
    (or as old as) the stored quote is dropped. Reads go through
    ``snapshot()`` which copies under the lock, so ingestion never waits on
    detection.

    Example:
        >>> store = QuoteStore(max_quote_age_seconds=300)
        >>> store.ingest(RawQuote("fanduel", "evt1", "total", "over", now, american_price=-105, line=45.5))
        True
        >>> snapshot = store.snapshot()
    """

    def __init__(self, max_quote_age_seconds: Optional[float] = None):
        self.max_quote_age_seconds = max_quote_age_seconds
        self._quotes: dict[tuple[str, SelectionKey], Quote] = {}
        self._lock = threading.Lock()
        self._revision = 0
        self._rejected: dict[RejectReason, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._quotes)

    @property
    def revision(self) -> int:
        """Incremented on every accepted change."""
        return self._revision

    @property
    def rejected_counts(self) -> dict[str, int]:
        return {reason.value: count for reason, count in self._rejected.items()}

    def ingest(self, raw: RawQuote) -> bool:
        """
        Normalize and store one update.

        Returns:
            True if the store changed, False if the update was dropped
        """
        return self._ingest(raw) is None

    def _ingest(self, raw: RawQuote) -> Optional[RejectReason]:
        try:
            quote = normalize_quote(raw)
        except QuoteRejected as e:
            with self._lock:
                self._rejected[e.reason] += 1
            logger.debug(f"Dropped quote from {raw.sportsbook or '?'}: {e}")
            return e.reason
        return None if self.put(quote) else RejectReason.STALE

    def put(self, quote: Quote) -> bool:
        """Store an already-normalized quote unless it is older than the current one."""
        key = (quote.sportsbook, quote.selection_key)
        with self._lock:
            current = self._quotes.get(key)
            if current is not None and quote.observed_at <= current.observed_at:
                self._rejected[RejectReason.STALE] += 1
                logger.debug(
                    f"Dropped out-of-order quote {quote.sportsbook} {quote.selection_key}: "
                    f"{quote.observed_at.isoformat()} <= {current.observed_at.isoformat()}"
                )
                return False
            self._quotes[key] = quote
            self._revision += 1
        return True

    def ingest_many(self, raws: Iterable[RawQuote]) -> int:
        """Ingest a batch; returns the number of accepted updates."""
        accepted, _ = self.ingest_batch(raws)
        return accepted

    def ingest_batch(self, raws: Iterable[RawQuote]) -> tuple[int, dict[str, int]]:
        """
        Ingest a batch.

        Returns:
            (accepted count, rejected count per reason)
        """
        accepted = 0
        rejected: dict[str, int] = defaultdict(int)
        for raw in raws:
            reason = self._ingest(raw)
            if reason is None:
                accepted += 1
            else:
                rejected[reason.value] += 1
        return accepted, dict(rejected)

    def get(self, sportsbook: str, selection_key: SelectionKey) -> Optional[Quote]:
        with self._lock:
            return self._quotes.get((sportsbook.lower(), selection_key))

    def remove_event(self, event_id: str) -> int:
        """Drop every quote for an event (e.g. it has settled)."""
        with self._lock:
            keys = [k for k, q in self._quotes.items() if q.event_id == event_id]
            for k in keys:
                del self._quotes[k]
            if keys:
                self._revision += 1
        return len(keys)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Remove quotes older than the configured maximum age."""
        if self.max_quote_age_seconds is None:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=self.max_quote_age_seconds)
        with self._lock:
            keys = [k for k, q in self._quotes.items() if q.observed_at < cutoff]
            for k in keys:
                del self._quotes[k]
            if keys:
                self._revision += 1
        if keys:
            logger.debug(f"Swept {len(keys)} stale quotes")
        return len(keys)

    def snapshot(self, now: Optional[datetime] = None) -> QuoteSnapshot:
        """Copy current quotes and group them by market."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            quotes = list(self._quotes.values())

        if self.max_quote_age_seconds is not None:
            cutoff = now - timedelta(seconds=self.max_quote_age_seconds)
            quotes = [q for q in quotes if q.observed_at >= cutoff]

        return QuoteSnapshot(taken_at=now, groups=build_groups(quotes))

    def clear(self) -> None:
        with self._lock:
            self._quotes.clear()
            self._revision += 1
