"""
Odds conversion and calculation utilities.

Provides functions for converting between odds formats and calculating
implied probabilities, arbitrage ROI, expected value and vig.

All values are floats; ROI and EV are reported in basis points
(1 bps = 0.01%).
"""
import math
from typing import NamedTuple

BPS: float = 10000.0


class VigorousLine(NamedTuple):
    """Two-way line with vig information."""

    side1_implied: float
    side2_implied: float
    total_implied: float
    vig_percent: float
    side1_fair: float
    side2_fair: float


def is_valid_american(american: float) -> bool:
    """
    Check that a number is a usable American price.

    American odds are finite and have magnitude of at least 100.

    Examples:
        >>> is_valid_american(-110)
        True
        >>> is_valid_american(50)
        False
    """
    if american is None or not math.isfinite(american):
        return False
    return american >= 100 or american <= -100


def american_to_decimal(american: float) -> float:
    """
    Convert American odds to decimal odds.

    Args:
        american: American odds (e.g., -110, +150)

    Returns:
        Decimal odds (e.g., 1.909, 2.5)

    Examples:
        >>> round(american_to_decimal(-110), 3)
        1.909
        >>> american_to_decimal(150)
        2.5
    """
    if american > 0:
        return american / 100.0 + 1.0
    return 100.0 / abs(american) + 1.0


def decimal_to_american(decimal_odds: float) -> int:
    """
    Convert decimal odds to American odds.

    Args:
        decimal_odds: Decimal odds (e.g., 1.91, 2.50)

    Returns:
        American odds (e.g., -110, +150)

    Examples:
        >>> decimal_to_american(2.5)
        150
        >>> decimal_to_american(1.5)
        -200
    """
    if decimal_odds <= 1.0:
        raise ValueError(f"Decimal odds must be greater than 1.0, got {decimal_odds}")
    if decimal_odds >= 2.0:
        return int(round((decimal_odds - 1.0) * 100))
    return int(round(-100.0 / (decimal_odds - 1.0)))


def american_to_implied_probability(american: float) -> float:
    """
    Convert American odds to implied probability.

    Note: This includes the bookmaker's vig, so probabilities won't sum to 1.

    Args:
        american: American odds

    Returns:
        Implied probability (0-1)

    Examples:
        >>> round(american_to_implied_probability(-110), 4)
        0.5238
        >>> american_to_implied_probability(150)
        0.4
    """
    if american > 0:
        return 100.0 / (american + 100.0)
    return -american / (-american + 100.0)


def implied_probability_to_american(probability: float) -> int:
    """
    Convert implied probability to American odds.

    Examples:
        >>> implied_probability_to_american(0.5)
        100
        >>> implied_probability_to_american(0.6)
        -150
    """
    if not 0.0 < probability < 1.0:
        raise ValueError(f"Probability must be in (0, 1), got {probability}")
    if probability == 0.5:
        return 100
    if probability > 0.5:
        return int(round(-probability / (1.0 - probability) * 100))
    return int(round((1.0 - probability) / probability * 100))


def calculate_vig(odds1: float, odds2: float) -> VigorousLine:
    """
    Calculate the vig/juice for a two-way line.

    Args:
        odds1: American odds for outcome 1
        odds2: American odds for outcome 2

    Returns:
        VigorousLine with implied probabilities, vig, and fair probabilities
    """
    implied1 = american_to_implied_probability(odds1)
    implied2 = american_to_implied_probability(odds2)
    total_implied = implied1 + implied2

    return VigorousLine(
        side1_implied=implied1,
        side2_implied=implied2,
        total_implied=total_implied,
        vig_percent=(total_implied - 1.0) * 100.0,
        side1_fair=implied1 / total_implied,
        side2_fair=implied2 / total_implied,
    )


def remove_vig(odds1: float, odds2: float) -> tuple[float, float]:
    """
    Remove vig to get fair probabilities (multiplicative method).

    Returns:
        Tuple of (fair_prob1, fair_prob2) summing to 1.0
    """
    result = calculate_vig(odds1, odds2)
    return (result.side1_fair, result.side2_fair)


def arbitrage_roi_bps(implied1: float, implied2: float) -> float:
    """
    Guaranteed return of a two-way arbitrage in basis points.

    ROI = (1 / (implied1 + implied2) - 1) * 10000. Negative when the
    combined implied probability is 100% or more (no arbitrage).

    Examples:
        >>> round(arbitrage_roi_bps(0.48, 0.48), 2)
        416.67
    """
    return (1.0 / (implied1 + implied2) - 1.0) * BPS


def expected_value_bps(fair_probability: float, book_implied: float) -> float:
    """
    Expected value of a bet in basis points.

    EV = (fair / implied - 1) * 10000, i.e. the expected return per unit
    staked at the book's price when the true probability is ``fair``.

    Examples:
        >>> round(expected_value_bps(0.55, 0.5), 1)
        1000.0
    """
    return (fair_probability / book_implied - 1.0) * BPS


def calculate_arbitrage_stakes(
    odds1: float,
    odds2: float,
    total_stake: float,
) -> tuple[float, float, float]:
    """
    Calculate optimal stake distribution for arbitrage.

    Stakes are proportional to implied probability so both outcomes
    return the same amount.

    Args:
        odds1: American odds for outcome 1
        odds2: American odds for outcome 2
        total_stake: Total amount to distribute

    Returns:
        Tuple of (stake1, stake2, guaranteed_profit)
    """
    implied1 = american_to_implied_probability(odds1)
    implied2 = american_to_implied_probability(odds2)
    total_implied = implied1 + implied2

    stake1 = round(total_stake * implied1 / total_implied, 2)
    stake2 = round(total_stake * implied2 / total_implied, 2)

    return1 = stake1 * american_to_decimal(odds1)
    return2 = stake2 * american_to_decimal(odds2)

    guaranteed_profit = round(min(return1, return2) - total_stake, 2)
    return (stake1, stake2, guaranteed_profit)


def format_american_odds(odds: float) -> str:
    """
    Format American odds with proper sign.

    Examples:
        >>> format_american_odds(-110)
        '-110'
        >>> format_american_odds(150)
        '+150'
    """
    value = int(odds)
    if value > 0:
        return f"+{value}"
    return str(value)
