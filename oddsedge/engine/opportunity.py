"""
Opportunity records and the immutable per-tick snapshot.

An Opportunity is derived from the quotes of one market and lives only as
long as those quotes keep producing it. Its id is stable across ticks so
that price movement can be tracked.
"""
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

from oddsedge.betting.odds_converter import calculate_arbitrage_stakes, implied_probability_to_american
from oddsedge.config.constants import Mode, OpportunityKind, Side
from oddsedge.data.quote_store import Quote, QuoteSnapshot


def make_opportunity_id(*parts: Any) -> str:
    """Stable id from the logical identity of an opportunity."""
    raw = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha1(raw.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class Leg:
    """One side of an opportunity at a specific sportsbook."""

    side: Side
    sportsbook: str
    american_price: int
    implied_probability: float
    deep_link: Optional[str] = None
    observed_at: Optional[datetime] = None

    @classmethod
    def from_quote(cls, quote: Quote) -> "Leg":
        return cls(
            side=quote.side,
            sportsbook=quote.sportsbook,
            american_price=quote.american_price,
            implied_probability=quote.implied_probability,
            deep_link=quote.deep_link,
            observed_at=quote.observed_at,
        )

    def to_dict(self, include_link: bool = True) -> dict[str, Any]:
        data = {
            "side": self.side.value,
            "book": self.sportsbook,
            "price": self.american_price,
            "implied": round(self.implied_probability, 6),
        }
        if include_link:
            data["link"] = self.deep_link
        return data


@dataclass(frozen=True)
class Opportunity:
    """
    An arbitrage pair or a positive-EV single.

    For arbitrage, ``side_a``/``side_b`` hold the best price on each side.
    For EV, ``side_a`` is the mispriced quote and ``fair_probability`` the
    sharp consensus it was measured against.
    """

    id: str
    kind: OpportunityKind
    roi_bps: float
    mode: Mode
    event_id: str
    market: str
    side_a: Leg
    side_b: Optional[Leg] = None
    selection: str = ""
    line: Optional[float] = None
    event_start: Optional[datetime] = None
    sport: str = ""
    league: str = ""
    description: str = ""
    fair_probability: Optional[float] = None
    reference_books: tuple[str, ...] = ()

    @property
    def is_live(self) -> bool:
        return self.mode == Mode.LIVE

    def tracked_values(self) -> dict[str, Optional[float]]:
        """Fields whose movement is reported to clients."""
        return {
            "roi": self.roi_bps,
            "side_a": self.side_a.american_price,
            "side_b": self.side_b.american_price if self.side_b else None,
        }

    def to_row(self, include_links: bool = True) -> dict[str, Any]:
        """Serialize to the wire row format."""
        row: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind.value,
            "roi_bps": round(self.roi_bps, 2),
            "mode": self.mode.value,
            "event": {
                "id": self.event_id,
                "start": self.event_start.isoformat() if self.event_start else None,
                "live": self.is_live,
                "sport": self.sport,
                "league": self.league,
                "description": self.description,
            },
            "market": self.market,
            "selection": self.selection,
            "line": self.line,
            "side_a": self.side_a.to_dict(include_links),
            "side_b": self.side_b.to_dict(include_links) if self.side_b else None,
        }
        if self.kind == OpportunityKind.ARB and self.side_b is not None:
            stake_a, stake_b, profit = calculate_arbitrage_stakes(
                self.side_a.american_price, self.side_b.american_price, 100.0
            )
            row["stakes"] = {"a": stake_a, "b": stake_b, "profit": profit, "total": 100.0}
        if self.fair_probability is not None:
            row["fair_probability"] = round(self.fair_probability, 6)
            if 0.0 < self.fair_probability < 1.0:
                row["fair_price"] = implied_probability_to_american(self.fair_probability)
            row["reference_books"] = list(self.reference_books)
        return row


@dataclass(frozen=True)
class TickSnapshot:
    """
    Result of one detection pass. Shared read-only by every subscription.
    """

    version: int
    computed_at: datetime
    quotes: QuoteSnapshot
    opportunities: tuple[Opportunity, ...] = ()
    duration_ms: float = 0.0
    by_id: Mapping[str, Opportunity] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(
        cls,
        version: int,
        quotes: QuoteSnapshot,
        opportunities: list[Opportunity],
        duration_ms: float = 0.0,
        computed_at: Optional[datetime] = None,
    ) -> "TickSnapshot":
        return cls(
            version=version,
            computed_at=computed_at or datetime.now(timezone.utc),
            quotes=quotes,
            opportunities=tuple(opportunities),
            duration_ms=duration_ms,
            by_id=MappingProxyType({o.id: o for o in opportunities}),
        )

    @classmethod
    def empty(cls) -> "TickSnapshot":
        now = datetime.now(timezone.utc)
        return cls(version=0, computed_at=now, quotes=QuoteSnapshot(taken_at=now))

    def of_kind(self, kind: OpportunityKind) -> tuple[Opportunity, ...]:
        return tuple(o for o in self.opportunities if o.kind == kind)
