"""
Betting math and opportunity detection.

Provides tools for:
- Odds conversion and vig calculation (this package namespace)
- Cross-book arbitrage scanning (``oddsedge.betting.arbitrage_scanner``)
- Positive-EV detection against a weighted sharp consensus
  (``oddsedge.betting.value_detector``)

The scanners depend on the quote store, which itself depends on the odds
math, so only the odds math is re-exported here.
"""

from .odds_converter import (
    BPS,
    american_to_decimal,
    american_to_implied_probability,
    decimal_to_american,
    implied_probability_to_american,
    is_valid_american,
    calculate_vig,
    remove_vig,
    arbitrage_roi_bps,
    expected_value_bps,
    calculate_arbitrage_stakes,
    format_american_odds,
)

__all__ = [
    "BPS",
    "american_to_decimal",
    "american_to_implied_probability",
    "decimal_to_american",
    "implied_probability_to_american",
    "is_valid_american",
    "calculate_vig",
    "remove_vig",
    "arbitrage_roi_bps",
    "expected_value_bps",
    "calculate_arbitrage_stakes",
    "format_american_odds",
]
