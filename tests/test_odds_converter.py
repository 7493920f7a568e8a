"""Tests for odds conversion and arbitrage math."""

import math

import pytest

from oddsedge.betting.odds_converter import (
    american_to_decimal,
    american_to_implied_probability,
    arbitrage_roi_bps,
    calculate_arbitrage_stakes,
    calculate_vig,
    decimal_to_american,
    expected_value_bps,
    format_american_odds,
    implied_probability_to_american,
    is_valid_american,
    remove_vig,
)


class TestImpliedProbability:
    """Tests for American price to probability conversion."""

    def test_favorite(self):
        """Test that -110 implies 110/210."""
        assert american_to_implied_probability(-110) == pytest.approx(110 / 210)

    def test_underdog(self):
        """Test that +150 implies 40%."""
        assert american_to_implied_probability(150) == pytest.approx(0.4)

    def test_even_money(self):
        """Test that +100 and -100 both imply 50%."""
        assert american_to_implied_probability(100) == pytest.approx(0.5)
        assert american_to_implied_probability(-100) == pytest.approx(0.5)

    def test_probability_back_to_american(self):
        """Test the inverse conversion."""
        assert implied_probability_to_american(0.6) == -150
        assert implied_probability_to_american(0.4) == 150
        with pytest.raises(ValueError):
            implied_probability_to_american(1.0)


class TestPriceFormats:
    """Tests for decimal and American price conversion."""

    def test_american_to_decimal(self):
        assert american_to_decimal(150) == pytest.approx(2.5)
        assert american_to_decimal(-200) == pytest.approx(1.5)

    def test_decimal_to_american(self):
        assert decimal_to_american(2.5) == 150
        assert decimal_to_american(1.5) == -200
        assert decimal_to_american(2.0) == 100

    def test_decimal_must_exceed_one(self):
        """Test that decimal odds of 1.0 or less are rejected."""
        with pytest.raises(ValueError):
            decimal_to_american(1.0)

    @pytest.mark.parametrize("price", [-110, 100, -100, 250, -10000])
    def test_valid_american(self, price):
        assert is_valid_american(price)

    @pytest.mark.parametrize("price", [0, 50, -99, math.nan, math.inf])
    def test_invalid_american(self, price):
        """Test that prices inside (-100, 100) and non-finite values are rejected."""
        assert not is_valid_american(price)

    def test_format(self):
        assert format_american_odds(150) == "+150"
        assert format_american_odds(-110) == "-110"


class TestArbitrageMath:
    """Tests for ROI, EV and stake calculations."""

    def test_roi_bps(self):
        """Test ROI = (1 / total implied - 1) in basis points."""
        assert arbitrage_roi_bps(0.48, 0.48) == pytest.approx((1 / 0.96 - 1) * 10000)

    def test_no_arb_is_negative(self):
        """Test that a normal vigged line gives negative ROI."""
        implied = american_to_implied_probability(-110)
        assert arbitrage_roi_bps(implied, implied) < 0

    def test_expected_value(self):
        """Test EV = (fair / implied - 1) in basis points."""
        assert expected_value_bps(0.55, 0.5) == pytest.approx(1000.0)
        assert expected_value_bps(0.45, 0.5) == pytest.approx(-1000.0)

    def test_stakes_equalize_returns(self):
        """Test that both legs pay out the same amount (to the cent)."""
        stake1, stake2, profit = calculate_arbitrage_stakes(110, 105, 100.0)

        assert stake1 + stake2 == pytest.approx(100.0, abs=0.01)
        return1 = stake1 * american_to_decimal(110)
        return2 = stake2 * american_to_decimal(105)
        assert return1 == pytest.approx(return2, abs=0.05)
        assert profit > 0

    def test_vig(self):
        """Test vig and fair probabilities of a -110/-110 line."""
        line = calculate_vig(-110, -110)
        assert line.vig_percent == pytest.approx((220 / 210 - 1) * 100)
        fair1, fair2 = remove_vig(-110, -110)
        assert fair1 == pytest.approx(0.5)
        assert fair1 + fair2 == pytest.approx(1.0)
