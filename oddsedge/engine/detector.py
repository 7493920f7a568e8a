"""
Runs every detector over a quote snapshot.
"""
from typing import Optional

from loguru import logger

from oddsedge.betting.arbitrage_scanner import ArbitrageScanner
from oddsedge.betting.value_detector import EvModelConfig, ValueDetector
from oddsedge.data.quote_store import QuoteSnapshot

from .opportunity import Opportunity


class OpportunityDetector:
    """
    Arbitrage plus positive-EV detection.

    The default EV model is applied on every tick; per-user models are run
    separately through ``detect_ev`` against the same quote snapshot.
    """

    def __init__(
        self,
        arbitrage: Optional[ArbitrageScanner] = None,
        value: Optional[ValueDetector] = None,
        default_ev_config: Optional[EvModelConfig] = None,
    ):
        self.arbitrage = arbitrage or ArbitrageScanner()
        self.value = value or ValueDetector()
        self.default_ev_config = default_ev_config or EvModelConfig()

    @classmethod
    def from_settings(cls, settings) -> "OpportunityDetector":
        return cls(
            arbitrage=ArbitrageScanner.from_settings(settings),
            value=ValueDetector(),
            default_ev_config=EvModelConfig.from_settings(settings.value_detection),
        )

    def detect_arbs(self, snapshot: QuoteSnapshot) -> list[Opportunity]:
        return self.arbitrage.scan(snapshot).opportunities

    def detect_ev(
        self, snapshot: QuoteSnapshot, config: Optional[EvModelConfig] = None
    ) -> list[Opportunity]:
        return self.value.scan(snapshot, config or self.default_ev_config).opportunities

    def detect(
        self, snapshot: QuoteSnapshot, ev_config: Optional[EvModelConfig] = None
    ) -> list[Opportunity]:
        """Arbitrage and EV opportunities for every market in the snapshot."""
        arbs = self.detect_arbs(snapshot)
        edges = self.detect_ev(snapshot, ev_config)
        logger.debug(
            f"Detected {len(arbs)} arbs and {len(edges)} EV edges "
            f"across {len(snapshot.groups)} markets"
        )
        return arbs + edges
