"""
Tests for datamarket/settlement/fees.py and datamarket/money.py

Tests fee quotes, half-up rounding and the wei boundary conversion.
"""

import pytest
from decimal import Decimal

from datamarket.config import NETWORK_FEE_ESTIMATE, UNITS_PER_COIN
from datamarket.errors import InvalidAmount
from datamarket.money import from_units, to_decimal, to_units
from datamarket.settlement.fees import (
    fee_rate,
    quantize,
    quote_bounty_fee,
    quote_purchase,
)


# ============================================================================
# PURCHASE QUOTES
# ============================================================================

class TestQuotePurchase:
    """Test quote_purchase."""

    def test_fee_exactness(self):
        quote = quote_purchase("100.0000")
        assert quote.platform_fee == Decimal("2.5000")
        assert quote.total == Decimal("102.5000")
        assert str(quote.platform_fee) == "2.5000"
        assert str(quote.total) == "102.5000"

    def test_network_fee_is_informational(self):
        quote = quote_purchase("10")
        assert quote.network_fee_estimate == NETWORK_FEE_ESTIMATE
        assert quote.total == quote.price + quote.platform_fee

    def test_rounds_half_up(self):
        # 0.01 * 0.025 = 0.00025 -> 0.0003
        assert quote_purchase("0.01").platform_fee == Decimal("0.0003")
        # 0.001 * 0.025 = 0.000025 -> 0.0000
        assert quote_purchase("0.001").platform_fee == Decimal("0.0000")

    def test_zero_price(self):
        quote = quote_purchase(0)
        assert quote.platform_fee == Decimal("0")
        assert quote.total == Decimal("0")

    def test_custom_fee_rate(self):
        assert quote_purchase(100, fee_bps=500).platform_fee == Decimal("5.0000")

    def test_float_input_uses_shortest_repr(self):
        quote = quote_purchase(0.1)
        assert quote.price == Decimal("0.1")
        assert quote.platform_fee == Decimal("0.0025")

    def test_no_drift_across_many_quotes(self):
        totals = sum((quote_purchase("0.1").total for _ in range(1000)), Decimal(0))
        assert totals == Decimal("102.5")

    def test_negative_price_rejected(self):
        with pytest.raises(InvalidAmount):
            quote_purchase("-1")

    def test_oversized_price_rejected(self):
        with pytest.raises(InvalidAmount, match="too large"):
            quote_purchase("1e30")

    @pytest.mark.parametrize("bad", ["abc", "", "NaN", "Infinity", True, None, [1]])
    def test_malformed_price_rejected(self, bad):
        with pytest.raises(InvalidAmount):
            quote_purchase(bad)

    def test_invalid_amount_is_value_error(self):
        with pytest.raises(ValueError):
            quote_purchase("-5")

    def test_to_dict(self):
        assert quote_purchase("100").to_dict() == {
            "price": "100",
            "platformFee": "2.5000",
            "networkFeeEstimate": "0.001",
            "total": "102.5000",
        }


# ============================================================================
# BOUNTY FEES
# ============================================================================

class TestQuoteBountyFee:
    """Test quote_bounty_fee."""

    def test_fee_exactness(self):
        quote = quote_bounty_fee("40.0000")
        assert quote.platform_fee == Decimal("1.0000")
        assert quote.net_reward == Decimal("39.0000")

    def test_pinned_fee_rate(self):
        quote = quote_bounty_fee("40", fee_bps=500)
        assert quote.platform_fee == Decimal("2.0000")
        assert quote.net_reward == Decimal("38.0000")
        assert quote.fee_bps == 500

    def test_fee_plus_net_is_reward(self):
        quote = quote_bounty_fee("12.3457")
        assert quote.platform_fee + quote.net_reward == quote.reward

    def test_fee_finer_than_display(self):
        """Sub-display fees are kept exact, as the ledger withholds them."""
        quote = quote_bounty_fee("1.23")
        assert quote.platform_fee == Decimal("0.03075")
        assert quote.net_reward == Decimal("1.19925")
        assert quote.to_dict()["netReward"] == "1.19925"

    def test_display_padding(self):
        assert quote_bounty_fee("40").to_dict()["platformFee"] == "1.0000"

    def test_negative_reward_rejected(self):
        with pytest.raises(InvalidAmount):
            quote_bounty_fee("-40")

    def test_oversized_reward_rejected(self):
        with pytest.raises(InvalidAmount):
            quote_bounty_fee("1e30")


class TestHelpers:
    """Test fee_rate and quantize."""

    def test_fee_rate(self):
        assert fee_rate(250) == Decimal("0.025")

    def test_quantize(self):
        assert quantize(Decimal("1.23455")) == Decimal("1.2346")
        assert quantize(Decimal("1.23444")) == Decimal("1.2344")


# ============================================================================
# LEDGER UNITS
# ============================================================================

class TestUnits:
    """Test to_units / from_units / to_decimal."""

    def test_to_units(self):
        assert to_units("1.5") == 1_500_000_000_000_000_000
        assert to_units(Decimal("0.000000000000000001")) == 1
        assert to_units(2) == 2 * UNITS_PER_COIN

    def test_to_units_rejects_sub_unit(self):
        with pytest.raises(InvalidAmount):
            to_units("0.0000000000000000001")

    def test_to_units_rejects_negative(self):
        with pytest.raises(InvalidAmount):
            to_units(-1)

    def test_from_units(self):
        assert from_units(UNITS_PER_COIN) == Decimal(1)
        assert from_units(25 * 10 ** 17) == Decimal("2.5")

    def test_from_units_rejects_non_integer(self):
        with pytest.raises(InvalidAmount):
            from_units(1.5)
        with pytest.raises(InvalidAmount):
            from_units(True)

    def test_round_trip_is_exact(self):
        assert from_units(to_units("123.456789")) == Decimal("123.456789")

    def test_to_decimal_strips_whitespace(self):
        assert to_decimal(" 42.5 ") == Decimal("42.5")
