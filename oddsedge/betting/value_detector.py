"""
Positive expected value detection.

Identifies +EV bets by comparing each sportsbook's price to a fair
probability built from a weighted consensus of sharp reference books.
The reference set, weights and thresholds come from an EV model, so users
can run the same quotes through their own configuration.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

from loguru import logger

from oddsedge.config.constants import COMPLEMENT, Mode, OpportunityKind, Side
from oddsedge.data.quote_store import MarketGroup, Quote, QuoteSnapshot
from oddsedge.engine.opportunity import Leg, Opportunity, make_opportunity_id

from .odds_converter import expected_value_bps, remove_vig

# (probabilities by book, weights or None) -> (fair probability, contributing books)
WeightingFunction = Callable[
    [Mapping[str, float], Optional[Mapping[str, float]]],
    Optional[tuple[float, tuple[str, ...]]],
]


def weighted_fair_probability(
    probabilities: Mapping[str, float],
    weights: Optional[Mapping[str, float]] = None,
) -> Optional[tuple[float, tuple[str, ...]]]:
    """
    Weighted average of reference probabilities.

    Weights are normalized over the books that actually quoted the market,
    so a missing book's weight is redistributed to the others. With an
    explicit weight map, books absent from the map (or weighted 0) are
    ignored; with no map every book counts equally.

    Args:
        probabilities: Implied (or de-vigged) probability per reference book
        weights: Optional relative weight per book, e.g. {"pinnacle": 60, "circa": 40}

    Returns:
        (fair_probability, contributing_books) or None if nothing contributes

    Examples:
        >>> weighted_fair_probability({"pinnacle": 0.50, "circa": 0.52})
        (0.51, ('circa', 'pinnacle'))
        >>> weighted_fair_probability({"pinnacle": 0.50, "circa": 0.60}, {"pinnacle": 3, "circa": 1})
        (0.525, ('circa', 'pinnacle'))
    """
    total_weight = 0.0
    blended = 0.0
    contributing = []
    for book in sorted(probabilities):
        weight = 1.0 if weights is None else float(weights.get(book, 0.0))
        if weight <= 0:
            continue
        blended += probabilities[book] * weight
        total_weight += weight
        contributing.append(book)

    if total_weight == 0:
        return None
    return (blended / total_weight, tuple(contributing))


@dataclass(frozen=True)
class EvModelConfig:
    """
    Parameters of one EV model.

    The default model comes from settings; user models are loaded from the
    ``user_ev_models`` table.
    """

    name: str = "default"
    model_id: Optional[str] = None
    sharp_books: tuple[str, ...] = ("pinnacle", "circa")
    book_weights: Optional[Mapping[str, float]] = None
    min_books_reference: int = 2
    max_reference_spread: float = 0.05
    min_ev_bps: float = 0.0
    devig_method: str = "none"
    fallback_mode: str = "hide"
    fallback_weights: Optional[Mapping[str, float]] = None
    sports: tuple[str, ...] = ()
    markets: tuple[str, ...] = ()
    market_type: str = "all"

    @classmethod
    def from_settings(cls, value_settings) -> "EvModelConfig":
        return cls(
            sharp_books=tuple(b.lower() for b in value_settings.sharp_books),
            min_books_reference=value_settings.min_books_reference,
            max_reference_spread=value_settings.max_reference_spread,
            min_ev_bps=value_settings.min_ev_bps,
            devig_method=value_settings.devig_method,
        )

    @property
    def fingerprint(self) -> tuple:
        """Hashable identity of the parameters, used to memoize detection."""

        def frozen(mapping):
            return tuple(sorted(mapping.items())) if mapping else None

        return (
            self.sharp_books,
            frozen(self.book_weights),
            self.min_books_reference,
            self.max_reference_spread,
            self.min_ev_bps,
            self.devig_method,
            self.fallback_mode,
            frozen(self.fallback_weights),
            self.sports,
            self.markets,
            self.market_type,
        )

    def applies_to(self, group: MarketGroup) -> bool:
        """Check the model's sport, market and market-type scope."""
        if self.sports:
            scope = {group.sport.lower(), group.league.lower()}
            if not scope.intersection(self.sports):
                return False
        if self.markets and group.market not in self.markets:
            return False
        if self.market_type == "player" and not is_player_market(group):
            return False
        if self.market_type == "game" and is_player_market(group):
            return False
        return True


def is_player_market(group: MarketGroup) -> bool:
    return group.market.startswith("player_")


@dataclass
class Consensus:
    """Fair probability for one side of one market."""

    side: Side
    fair_probability: float
    reference_books: tuple[str, ...]
    used_fallback: bool = False


@dataclass
class DetectionResult:
    """Result of an EV scan."""

    opportunities: list[Opportunity] = field(default_factory=list)
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    markets_scanned: int = 0
    insufficient_consensus: int = 0

    @property
    def best_edge(self) -> Optional[Opportunity]:
        if not self.opportunities:
            return None
        return max(self.opportunities, key=lambda o: o.roi_bps)


class ValueDetector:
    """
    Detects positive-EV prices against a sharp consensus.

    Example:
        >>> detector = ValueDetector()
        >>> config = EvModelConfig(sharp_books=("pinnacle", "circa"), min_books_reference=2)
        >>> result = detector.scan(snapshot, config)
        >>> for opp in result.opportunities:
        ...     print(opp.side_a.sportsbook, f"{opp.roi_bps:.0f} bps")
    """

    def __init__(self, weighting: WeightingFunction = weighted_fair_probability):
        self.weighting = weighting

    def _reference_probabilities(
        self,
        group: MarketGroup,
        side: Side,
        books: Iterable[str],
        devig_method: str,
    ) -> dict[str, float]:
        books = set(books)
        own = {q.sportsbook: q for q in group.quotes(side) if q.sportsbook in books}
        if devig_method == "none":
            return {book: q.implied_probability for book, q in own.items()}

        # multiplicative: rescale each book's two-way line to sum to 1
        other = {q.sportsbook: q for q in group.quotes(COMPLEMENT[side]) if q.sportsbook in books}
        probabilities = {}
        for book, quote in own.items():
            opposite = other.get(book)
            if opposite is None:
                continue
            probabilities[book] = remove_vig(quote.american_price, opposite.american_price)[0]
        return probabilities

    def _consensus_from(
        self,
        group: MarketGroup,
        side: Side,
        books: Iterable[str],
        weights: Optional[Mapping[str, float]],
        config: EvModelConfig,
    ) -> Optional[tuple[float, tuple[str, ...]]]:
        probabilities = self._reference_probabilities(group, side, books, config.devig_method)
        if weights is not None:
            probabilities = {b: p for b, p in probabilities.items() if weights.get(b, 0) > 0}
        if len(probabilities) < config.min_books_reference:
            return None

        values = list(probabilities.values())
        if max(values) - min(values) > config.max_reference_spread:
            return None

        result = self.weighting(probabilities, weights)
        if result is None or len(result[1]) < config.min_books_reference:
            return None
        return result

    def consensus(
        self, group: MarketGroup, side: Side, config: EvModelConfig
    ) -> Optional[Consensus]:
        """
        Build the fair probability for one side of a market.

        Returns None ("insufficient consensus") when too few reference books
        quote the side or the reference prices disagree beyond the spread bound.
        """
        result = self._consensus_from(
            group, side, config.sharp_books, config.book_weights, config
        )
        if result is not None:
            return Consensus(side, result[0], result[1])

        if config.fallback_mode == "use_fallback" and config.fallback_weights:
            result = self._consensus_from(
                group, side, config.fallback_weights.keys(), config.fallback_weights, config
            )
            if result is not None:
                return Consensus(side, result[0], result[1], used_fallback=True)
        return None

    def scan_group(self, group: MarketGroup, config: EvModelConfig) -> tuple[list[Opportunity], int]:
        """
        Find +EV quotes in one market.

        Returns:
            (opportunities, number of sides skipped for insufficient consensus)
        """
        if not config.applies_to(group):
            return [], 0

        opportunities: list[Opportunity] = []
        insufficient = 0
        mode = Mode.LIVE if group.is_live else Mode.PREMATCH

        for side in sorted(group.sides, key=lambda s: s.value):
            quotes: tuple[Quote, ...] = group.quotes(side)
            if not quotes:
                continue
            consensus = self.consensus(group, side, config)
            if consensus is None:
                insufficient += 1
                continue

            reference = set(consensus.reference_books) | set(config.sharp_books)
            for quote in quotes:
                if quote.sportsbook in reference:
                    continue
                ev = expected_value_bps(consensus.fair_probability, quote.implied_probability)
                if ev <= config.min_ev_bps:
                    continue
                opportunities.append(
                    Opportunity(
                        id=make_opportunity_id(
                            OpportunityKind.EV.value,
                            group.event_id,
                            group.market,
                            group.selection,
                            group.line,
                            side.value,
                            quote.sportsbook,
                        ),
                        kind=OpportunityKind.EV,
                        roi_bps=ev,
                        mode=mode,
                        event_id=group.event_id,
                        market=group.market,
                        selection=group.selection,
                        line=group.line,
                        side_a=Leg.from_quote(quote),
                        event_start=group.event_start,
                        sport=group.sport,
                        league=group.league,
                        description=group.description,
                        fair_probability=consensus.fair_probability,
                        reference_books=consensus.reference_books,
                    )
                )
        return opportunities, insufficient

    def scan(self, snapshot: QuoteSnapshot, config: EvModelConfig) -> DetectionResult:
        """Run EV detection over every market in a snapshot."""
        result = DetectionResult()
        for group in snapshot.groups:
            result.markets_scanned += 1
            found, insufficient = self.scan_group(group, config)
            result.opportunities.extend(found)
            result.insufficient_consensus += insufficient

        logger.debug(
            f"EV scan ({config.name}): {len(result.opportunities)} edges, "
            f"{result.insufficient_consensus} sides without consensus"
        )
        return result
