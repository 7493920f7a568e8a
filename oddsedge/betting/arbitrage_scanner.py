"""
Cross-book arbitrage scanner.

Identifies guaranteed profit opportunities by pairing the best price on
each side of a two-way market across sportsbooks.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from loguru import logger

from oddsedge.config.constants import SIDE_PAIRS, Mode, OpportunityKind, Side
from oddsedge.data.quote_store import MarketGroup, Quote, QuoteSnapshot
from oddsedge.engine.opportunity import Leg, Opportunity, make_opportunity_id

from .odds_converter import arbitrage_roi_bps, format_american_odds


def best_quote(quotes: Iterable[Quote]) -> Optional[Quote]:
    """
    Best available price on one side: lowest implied probability.

    Ties go to the alphabetically first sportsbook so repeated scans of the
    same quotes always pick the same book.
    """
    best: Optional[Quote] = None
    for quote in quotes:
        if best is None:
            best = quote
            continue
        if quote.implied_probability < best.implied_probability or (
            quote.implied_probability == best.implied_probability
            and quote.sportsbook < best.sportsbook
        ):
            best = quote
    return best


def side_pair(group: MarketGroup) -> Optional[tuple[Side, Side]]:
    """Return the complementary (A, B) sides quoted in a market, if any."""
    for side_a, side_b in SIDE_PAIRS.items():
        if group.quotes(side_a) and group.quotes(side_b):
            return side_a, side_b
    return None


@dataclass
class ScanResult:
    """Results from scanning for arbitrage opportunities."""

    opportunities: list[Opportunity] = field(default_factory=list)
    best_lines: dict[str, dict[str, Leg]] = field(default_factory=dict)  # opp id -> side -> leg
    scanned_markets: int = 0
    skipped_markets: int = 0
    scan_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_opportunities(self) -> bool:
        return len(self.opportunities) > 0

    def get_top_opportunities(self, n: int = 5) -> list[Opportunity]:
        """Get top N opportunities sorted by ROI."""
        return sorted(self.opportunities, key=lambda x: x.roi_bps, reverse=True)[:n]


class ArbitrageScanner:
    """
    Scanner for cross-book arbitrage opportunities.

    Arbitrage exists when the sum of implied probabilities of the best
    price on each side is below 100%. The pairing is always best A x best B,
    so the reported ROI is the maximum available in that market.

    Example:
        Book A: Over 45.5 @ +105 (implied 48.8%)
        Book B: Under 45.5 @ +105 (implied 48.8%)
        Total implied: 97.6% < 100% = ~244 bps guaranteed

    Usage:
        >>> scanner = ArbitrageScanner(min_roi_bps=0)
        >>> result = scanner.scan(snapshot)
        >>> for arb in result.opportunities:
        ...     print(f"{arb.roi_bps:.0f} bps on {arb.description}")
    """

    def __init__(
        self,
        min_roi_bps: float = 0.0,
        include_same_book: bool = True,
        excluded_bookmakers: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the arbitrage scanner.

        Args:
            min_roi_bps: Minimum ROI (basis points) to report
            include_same_book: Whether to report arbs where one book has the best price on both sides
            excluded_bookmakers: Books never used as a leg
        """
        self.min_roi_bps = min_roi_bps
        self.include_same_book = include_same_book
        self.excluded_bookmakers = frozenset(b.lower() for b in (excluded_bookmakers or ()))

    @classmethod
    def from_settings(cls, settings) -> "ArbitrageScanner":
        arb = settings.arbitrage
        return cls(
            min_roi_bps=arb.min_roi_bps,
            include_same_book=arb.include_same_book,
            excluded_bookmakers=arb.excluded_bookmakers,
        )

    def _usable(self, quotes: Iterable[Quote]) -> list[Quote]:
        if not self.excluded_bookmakers:
            return list(quotes)
        return [q for q in quotes if q.sportsbook not in self.excluded_bookmakers]

    def scan_group(self, group: MarketGroup) -> Optional[Opportunity]:
        """
        Check one market for an arbitrage between its complementary sides.

        Returns:
            The opportunity, or None if the market is one-sided, priced by a
            single book, or the best prices sum to 100% or more.
        """
        pair = side_pair(group)
        if pair is None:
            return None
        side_a, side_b = pair

        quotes_a = self._usable(group.quotes(side_a))
        quotes_b = self._usable(group.quotes(side_b))
        if not quotes_a or not quotes_b:
            return None

        books = {q.sportsbook for q in quotes_a} | {q.sportsbook for q in quotes_b}
        if len(books) < 2:
            return None

        best_a = best_quote(quotes_a)
        best_b = best_quote(quotes_b)

        if not self.include_same_book and best_a.sportsbook == best_b.sportsbook:
            return None

        total_implied = best_a.implied_probability + best_b.implied_probability
        if total_implied >= 1.0:
            return None

        roi = arbitrage_roi_bps(best_a.implied_probability, best_b.implied_probability)
        if roi < self.min_roi_bps:
            return None

        logger.trace(
            f"Arb {group.event_id} {group.market}: {best_a.sportsbook} {format_american_odds(best_a.american_price)}"
            f" / {best_b.sportsbook} {format_american_odds(best_b.american_price)} = {roi:.1f} bps"
        )
        return Opportunity(
            id=make_opportunity_id(
                OpportunityKind.ARB.value,
                group.event_id,
                group.market,
                group.selection,
                group.line,
                side_a.value,
                side_b.value,
            ),
            kind=OpportunityKind.ARB,
            roi_bps=roi,
            mode=Mode.LIVE if group.is_live else Mode.PREMATCH,
            event_id=group.event_id,
            market=group.market,
            selection=group.selection,
            line=group.line,
            side_a=Leg.from_quote(best_a),
            side_b=Leg.from_quote(best_b),
            event_start=group.event_start,
            sport=group.sport,
            league=group.league,
            description=group.description,
        )

    def scan(self, snapshot: QuoteSnapshot) -> ScanResult:
        """
        Scan every market in a quote snapshot.

        Returns:
            ScanResult with found opportunities and best lines
        """
        result = ScanResult()
        for group in snapshot.groups:
            result.scanned_markets += 1
            opportunity = self.scan_group(group)
            if opportunity is None:
                result.skipped_markets += 1
                continue
            result.opportunities.append(opportunity)
            result.best_lines[opportunity.id] = {
                opportunity.side_a.side.value: opportunity.side_a,
                opportunity.side_b.side.value: opportunity.side_b,
            }

        if result.opportunities:
            logger.debug(
                f"Arbitrage scan: {len(result.opportunities)} arbs in {result.scanned_markets} markets"
            )
        return result
